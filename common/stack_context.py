from attrs import define, field
from aws_cdk import RemovalPolicy, Stack, aws_logs as logs
from typing import Optional

import common.constants as constants

RETENTION_DAYS = {
    1: logs.RetentionDays.ONE_DAY,
    3: logs.RetentionDays.THREE_DAYS,
    5: logs.RetentionDays.FIVE_DAYS,
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    90: logs.RetentionDays.THREE_MONTHS,
    180: logs.RetentionDays.SIX_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
}


@define(slots=True, frozen=True)
class StackContext:
    scope: Stack
    topology: str
    env: str = field(
        default=constants.DEFAULT_ENV,
        metadata={"description": "Deployment environment (dev, staging, prod)"},
    )
    application: str = field(default=constants.APPLICATION, init=False)

    @property
    def aws_region(self) -> str:
        return Stack.of(self.scope).region

    # ---------- naming ----------
    def build_resource_name(
        self, resource_type: str, action: Optional[str] = None
    ) -> str:
        """Build resource name with optional action.

        Examples:
            - Without action: wordpress-fargate-aurora-efs-loggroup-dev
            - With action: wordpress-fargate-aurora-efs-wordpress-loggroup-dev
        """
        if action:
            return f"{self.application}-{self.topology}-{action}-{resource_type}-{self.env}".lower()
        return f"{self.application}-{self.topology}-{resource_type}-{self.env}".lower()

    # ---------- observability ----------
    def build_log_group(
        self,
        construct_id: str,
        log_group_name: Optional[str],
        retention_days: int,
        removal_policy: RemovalPolicy = RemovalPolicy.DESTROY,
    ) -> logs.LogGroup:
        if retention_days not in RETENTION_DAYS:
            raise ValueError(f"Unsupported log retention of {retention_days} days")
        return logs.LogGroup(
            self.scope,
            construct_id,
            log_group_name=log_group_name
            or f"/aws/ecs/{self.build_resource_name('service')}",
            removal_policy=removal_policy,
            retention=RETENTION_DAYS[retention_days],
        )
