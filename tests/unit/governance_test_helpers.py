from enum import Enum


def resource_governance_doc_url(resource: str) -> str:
    governance_doc_url = f"https://wordpress-container-docs/{resource}-governance"
    return governance_doc_url


class AWSService(str, Enum):
    EFS = "efs"
    Security_Group = "security-group"
    Log_Group = "log-group"
    RDS = "rds"
    ECS = "ecs"
