import os

DEFAULT_ENV = "dev"
DEFAULT_REGION = "ap-northeast-1"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Naming convention components
SERVICE_NAME = "wordpress-container"  # Logger service and CLI name
APPLICATION = "wordpress"  # The application being hosted

STATE_DIR_ENV = "WORDPRESS_CONTAINER_STATE_DIR"
DEFAULT_STATE_DIR = ".wordpress-container"

VPC_CIDR = "10.0.0.0/16"
PRIVATE_VPC_CIDR = "10.1.0.0/16"
CIDR_MASK = 24
MAX_AZS = 2
ANY_IPV4_CIDR = "0.0.0.0/0"

# Container images (opaque registry references)
WORDPRESS_IMAGE = "wordpress:php8.1-apache"
BITNAMI_WORDPRESS_IMAGE = "docker.io/bitnami/wordpress:6"
BITNAMI_MARIADB_IMAGE = "docker.io/bitnami/mariadb:11.1"

HTTP_PORT = 80
WORDPRESS_BITNAMI_PORT = 8080
MYSQL_PORT = 3306
NFS_PORT = 2049

WP_CONTENT_VOLUME = "wp-content"
WP_CONTENT_PATH = "/var/www/html/wp-content"

AURORA_MYSQL_VERSION = "8.0.mysql_aurora.3.08.0"
AURORA_MYSQL_MAJOR_VERSION = "8.0"
DEFAULT_DATABASE_NAME = "wordpress"
MASTER_USERNAME = "admin"

# Fields of the credential secret generated alongside a database cluster
CREDENTIAL_SECRET_FIELDS = (
    "username",
    "password",
    "dbname",
    "host",
    "port",
    "engine",
    "dbClusterIdentifier",
)

# utf8mb4 everywhere so 4-byte characters survive
MYSQL_PARAMETERS = {
    "character_set_client": "utf8mb4",
    "character_set_connection": "utf8mb4",
    "character_set_database": "utf8mb4",
    "character_set_results": "utf8mb4",
    "character_set_server": "utf8mb4",
    "collation_connection": "utf8mb4_bin",
    "collation_server": "utf8mb4_bin",
    "time_zone": "Asia/Tokyo",
}

ECS_INSTANCE_MANAGED_POLICY = "service-role/AmazonEC2ContainerServiceforEC2Role"
ECS_INSTANCE_TYPE = "t3a.medium"
LOG_SHIPPING_ACTIONS = (
    "logs:CreateLogGroup",
    "logs:CreateLogStream",
    "logs:PutLogEvents",
    "logs:DescribeLogStreams",
)

HEALTHY_HTTP_CODES = "200,301,302"
