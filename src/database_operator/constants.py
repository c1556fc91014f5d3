"""Constants for the Database Operator."""

# API Group
API_GROUP = "database.example.com"
API_VERSION = "v1"
API_VERSION_V2 = "v2"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"
API_GROUP_VERSION_V2 = f"{API_GROUP}/{API_VERSION_V2}"

# Resource Kinds
KIND_DATABASE = "Database"
KIND_CLUSTER_DATABASE = "ClusterDatabase"
KIND_BACKUP = "Backup"
KIND_RESTORE = "Restore"
KIND_STATEFULSET = "StatefulSet"
KIND_SERVICE = "Service"
KIND_SECRET = "Secret"
KIND_NAMESPACE = "Namespace"
KIND_RESOURCE_QUOTA = "ResourceQuota"
KIND_JOB = "Job"

# Plurals used by the custom objects API
PLURALS = {
    KIND_DATABASE: "databases",
    KIND_CLUSTER_DATABASE: "clusterdatabases",
    KIND_BACKUP: "backups",
    KIND_RESTORE: "restores",
}

# Labels
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_OWNER_KIND = f"{API_GROUP}/owner-kind"
LABEL_OWNER_NAME = f"{API_GROUP}/owner-name"
LABEL_TENANT = f"{API_GROUP}/tenant"
LABEL_APP = "app"
LABEL_DATABASE = "database"
LABEL_NAMESPACE_TENANT = "tenant"
MANAGED_BY_VALUE = "database-operator"
APP_NAME = "database"

# Annotations
ANNOTATION_VERSION = f"{API_GROUP}/version"
ANNOTATION_RECONCILE_REQUESTED = f"{API_GROUP}/reconcile-requested"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"
CLUSTER_FINALIZER = f"{API_GROUP}/clusterdatabase-finalizer"

# Field Manager
FIELD_MANAGER = "database-operator"
CONTROLLER_NAME = "database-operator"

# Workload defaults
DEFAULT_IMAGE = "postgres:14"
DEFAULT_REPLICAS = 1
DEFAULT_STORAGE_SIZE = "1Gi"
CONTAINER_NAME = "postgres"
POSTGRES_PORT = 5432
POSTGRES_PORT_NAME = "postgres"
DATA_VOLUME_NAME = "data"
DATA_MOUNT_PATH = "/var/lib/postgresql/data"
PGDATA_PATH = "/var/lib/postgresql/data/pgdata"
PASSWORD_LENGTH = 16
CREDENTIALS_SUFFIX = "-credentials"
SECRET_KEY_USERNAME = "username"
SECRET_KEY_PASSWORD = "password"
SECRET_KEY_DATABASE = "database"
CLUSTER_DOMAIN = "svc.cluster.local"

# Multi-tenant placement
QUOTA_NAME = "database-quota"
QUOTA_RESOURCE_KEY = f"clusterdatabases.{API_GROUP}"

# Backups
DEFAULT_BACKUP_RETENTION = 5
DEFAULT_BACKUP_LOCATION = "pvc://database-backups"
BACKUP_LOCATION_SCHEME = "pvc://"
BACKUP_MOUNT_PATH = "/backups"
BACKUP_VOLUME_NAME = "backups"
JOB_BACKOFF_LIMIT = 2
MAX_NAME_LENGTH = 63

# Condition Types
COND_READY = "Ready"
COND_PROGRESSING = "Progressing"
COND_BACKUP_READY = "BackupReady"
COND_RESTORE_READY = "RestoreReady"

# Condition Reasons
REASON_PROVISIONING = "Provisioning"
REASON_CONFIGURING = "Configuring"
REASON_DEPLOYING = "Deploying"
REASON_WAITING_FOR_REPLICAS = "WaitingForReplicas"
REASON_VERIFYING = "Verifying"
REASON_VERIFICATION_PENDING = "VerificationPending"
REASON_ALL_CHECKS_PASSED = "AllChecksPassed"
REASON_RECONCILIATION_COMPLETE = "ReconciliationComplete"
REASON_STATEFULSET_MISSING = "StatefulSetMissing"
REASON_SCALING_IN_PROGRESS = "ScalingInProgress"
REASON_REPLICAS_UNAVAILABLE = "ReplicasUnavailable"
REASON_FAILED = "Failed"
REASON_RETRYING = "Retrying"
REASON_CLEANUP_FAILED = "CleanupFailed"
REASON_SECRET_CREATION_FAILED = "SecretCreationFailed"
REASON_STATEFULSET_CREATION_FAILED = "StatefulSetCreationFailed"
REASON_STATEFULSET_UPDATE_FAILED = "StatefulSetUpdateFailed"
REASON_SERVICE_CREATION_FAILED = "ServiceCreationFailed"
REASON_NAMESPACE_INVALID = "NamespaceInvalid"
REASON_QUOTA_EXCEEDED = "QuotaExceeded"
REASON_DATABASE_NOT_FOUND = "DatabaseNotFound"
REASON_DATABASE_NOT_READY = "DatabaseNotReady"
REASON_BACKUP_NOT_FOUND = "BackupNotFound"
REASON_BACKUP_NOT_COMPLETED = "BackupNotCompleted"
REASON_BACKUP_IN_PROGRESS = "BackupInProgress"
REASON_BACKUP_COMPLETED = "BackupCompleted"
REASON_BACKUP_FAILED = "BackupFailed"
REASON_BACKUP_LOCATION_MISSING = "BackupLocationMissing"
REASON_RESTORE_IN_PROGRESS = "RestoreInProgress"
REASON_RESTORE_COMPLETED = "RestoreCompleted"
REASON_RESTORE_FAILED = "RestoreFailed"
REASON_RESTORE_STATE_LOST = "RestoreStateLost"
REASON_BACKUP_STATE_LOST = "BackupStateLost"
REASON_UNSUPPORTED_LOCATION = "UnsupportedStorageLocation"

# Event Reasons
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_PROVISIONING = "Provisioning"
EVENT_REASON_CHILD_CREATED = "Created"
EVENT_REASON_CHILD_UPDATED = "Updated"
EVENT_REASON_READY = "Ready"
EVENT_REASON_FAILED = "Failed"
EVENT_REASON_DELETING = "Deleting"
EVENT_REASON_DELETED = "Deleted"
EVENT_REASON_BACKUP_STARTED = "BackupStarted"
EVENT_REASON_BACKUP_COMPLETED = "BackupCompleted"
EVENT_REASON_BACKUP_FAILED = "BackupFailed"
EVENT_REASON_RESTORE_STARTED = "RestoreStarted"
EVENT_REASON_RESTORE_COMPLETED = "RestoreCompleted"
EVENT_REASON_RESTORE_FAILED = "RestoreFailed"
