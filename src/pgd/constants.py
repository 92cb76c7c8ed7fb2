USERNAME = "postgres"
DATABASE = "postgres"

PROJECT_FILENAME = "pgd.toml"
CONTAINER_PREFIX = "pgd"
VERSION_LABEL = "pgd.postgres.version"
POSTGRES_IMAGE = "postgres"
CONTAINER_PORT = "5432/tcp"
LOCALHOST = "127.0.0.1"

DEFAULT_POSTGRES_PORT = 5432
PORT_SEARCH_RANGE = 100

MAX_START_ATTEMPTS = 10
VERIFY_SECONDS = 5
RETRY_BACKOFF_SECONDS = 1.0
STOP_TIMEOUT = 10

DOCKERHUB_TAGS_URL = "https://hub.docker.com/v2/repositories/library/postgres/tags"
FALLBACK_VERSIONS = ["18.1", "17.7", "16.11", "15.15", "14.20"]
