"""
Constants used throughout virt-api.

This module defines all constant values used by the bootstrap layer including:
- Names of the records virt-api owns in the cluster
- Ownership labels and their values
- Admission callback paths
- Defaults for the self-signed identity
"""

# Persisted identity record
CERT_SECRET_NAME = "kubevirt-virt-api-certs"
CERT_BYTES_KEY = "cert-bytes"
KEY_BYTES_KEY = "key-bytes"
SIGNING_CERT_BYTES_KEY = "signing-cert-bytes"
IDENTITY_FIELDS = (CERT_BYTES_KEY, KEY_BYTES_KEY, SIGNING_CERT_BYTES_KEY)

# Self-signed identity parameters
CA_COMMON_NAME = "kubevirt.io"
CLUSTER_DOMAIN = "cluster.local"
CA_VALIDITY_DAYS = 3650
CERT_VALIDITY_DAYS = 365
RSA_KEY_SIZE = 2048

# Label constants for resource identification and management
APP_LABEL = "kubevirt.io"
APP_LABEL_AGGREGATOR = "virt-api-aggregator"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_OPERATOR = "kubevirt-operator"
MANAGED_BY_APISERVER = "virt-api"

# Webhook configuration names
VALIDATING_WEBHOOK_NAME = "virt-api-validator"
MUTATING_WEBHOOK_NAME = "virt-api-mutator"

# Validating admission callback paths
VMI_CREATE_VALIDATE_PATH = "/virtualmachineinstances-validate-create"
VMI_UPDATE_VALIDATE_PATH = "/virtualmachineinstances-validate-update"
VM_VALIDATE_PATH = "/virtualmachines-validate"
VMIRS_VALIDATE_PATH = "/virtualmachinereplicaset-validate"
VMIPRESET_VALIDATE_PATH = "/vmipreset-validate"
MIGRATION_CREATE_VALIDATE_PATH = "/migration-validate-create"
MIGRATION_UPDATE_VALIDATE_PATH = "/migration-validate-update"

# Mutating admission callback paths
VM_MUTATE_PATH = "/virtualmachines-mutate"
VMI_MUTATE_PATH = "/virtualmachineinstances-mutate"
MIGRATION_MUTATE_PATH = "/migration-mutate-create"

# Admission operations
OPERATION_CREATE = "CREATE"
OPERATION_UPDATE = "UPDATE"

FAILURE_POLICY_FAIL = "Fail"
ADMISSION_REVIEW_VERSIONS = ["v1", "v1beta1"]

# Aggregated API service priorities
GROUP_PRIORITY_MINIMUM = 1000
VERSION_PRIORITY = 15

# Request-header authentication configuration published by kube-apiserver
AUTH_CONFIGMAP_NAMESPACE = "kube-system"
AUTH_CONFIGMAP_NAME = "extension-apiserver-authentication"
REQUEST_HEADER_CLIENT_CA_KEY = "requestheader-client-ca-file"
REQUEST_HEADER_USERNAME_HEADERS_KEY = "requestheader-username-headers"
REQUEST_HEADER_GROUP_HEADERS_KEY = "requestheader-group-headers"
REQUEST_HEADER_EXTRA_PREFIXES_KEY = "requestheader-extra-headers-prefix"

# Cluster configuration consumed by admission handlers
KUBEVIRT_CONFIGMAP_NAME = "kubevirt-config"

# Watch cache names
CACHE_AUTH_CONFIGMAP = "extension-apiserver-authentication"
CACHE_VMI = "virtualmachineinstances"
CACHE_VMI_PRESET = "virtualmachineinstancepresets"
CACHE_NAMESPACE_LIMITS = "limitranges"
CACHE_KUBEVIRT_CONFIG = "kubevirt-config"

# Paths served without a proxied identity
DISCOVERY_PATHS = frozenset({"/", "/apis", "/apis/", "/openapi/v2"})
