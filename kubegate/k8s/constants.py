"""K8s constants used across kubegate modules.

This module contains constants that are shared across multiple modules
to avoid circular import issues.
"""

# kind -> (plural resource, api group, namespaced)
KNOWN_KINDS = {
    # core
    "Namespace": ("namespaces", "", False),
    "Node": ("nodes", "", False),
    "PersistentVolume": ("persistentvolumes", "", False),
    "Pod": ("pods", "", True),
    "Service": ("services", "", True),
    "ServiceAccount": ("serviceaccounts", "", True),
    "ConfigMap": ("configmaps", "", True),
    "Secret": ("secrets", "", True),
    "PersistentVolumeClaim": ("persistentvolumeclaims", "", True),
    "Endpoints": ("endpoints", "", True),
    "LimitRange": ("limitranges", "", True),
    "ResourceQuota": ("resourcequotas", "", True),
    # apps
    "Deployment": ("deployments", "apps", True),
    "StatefulSet": ("statefulsets", "apps", True),
    "DaemonSet": ("daemonsets", "apps", True),
    "ReplicaSet": ("replicasets", "apps", True),
    # batch
    "Job": ("jobs", "batch", True),
    "CronJob": ("cronjobs", "batch", True),
    # autoscaling
    "HorizontalPodAutoscaler": ("horizontalpodautoscalers", "autoscaling", True),
    "VerticalPodAutoscaler": ("verticalpodautoscalers", "autoscaling.k8s.io", True),
    # networking
    "Ingress": ("ingresses", "networking.k8s.io", True),
    "IngressClass": ("ingressclasses", "networking.k8s.io", False),
    "NetworkPolicy": ("networkpolicies", "networking.k8s.io", True),
    # policy
    "PodDisruptionBudget": ("poddisruptionbudgets", "policy", True),
    # rbac
    "Role": ("roles", "rbac.authorization.k8s.io", True),
    "RoleBinding": ("rolebindings", "rbac.authorization.k8s.io", True),
    "ClusterRole": ("clusterroles", "rbac.authorization.k8s.io", False),
    "ClusterRoleBinding": ("clusterrolebindings", "rbac.authorization.k8s.io", False),
    # storage
    "StorageClass": ("storageclasses", "storage.k8s.io", False),
    # scheduling
    "PriorityClass": ("priorityclasses", "scheduling.k8s.io", False),
    # api extensions
    "CustomResourceDefinition": ("customresourcedefinitions", "apiextensions.k8s.io", False),
    # service mesh and monitoring CRDs covered by the guides
    "VirtualService": ("virtualservices", "networking.istio.io", True),
    "DestinationRule": ("destinationrules", "networking.istio.io", True),
    "Gateway": ("gateways", "networking.istio.io", True),
    "PeerAuthentication": ("peerauthentications", "security.istio.io", True),
    "ServiceMonitor": ("servicemonitors", "monitoring.coreos.com", True),
    "PrometheusRule": ("prometheusrules", "monitoring.coreos.com", True),
}

# Kinds whose pods run indefinitely
LONG_RUNNING_KINDS = {"Deployment", "StatefulSet", "DaemonSet", "ReplicaSet"}

# Kinds carrying a pod template or pod spec
POD_BEARING_KINDS = LONG_RUNNING_KINDS | {"Pod", "Job", "CronJob"}

# Kinds an HPA or VPA can target
SCALABLE_KINDS = {"Deployment", "StatefulSet", "ReplicaSet"}

# Apply order; kinds not listed sort after every listed kind
APPLY_ORDER = [
    "Namespace",
    "CustomResourceDefinition",
    "ServiceAccount",
    "Secret",
    "ConfigMap",
    "ClusterRole",
    "ClusterRoleBinding",
    "Role",
    "RoleBinding",
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "Service",
    "Pod",
    "ReplicaSet",
    "Deployment",
    "StatefulSet",
    "DaemonSet",
    "Job",
    "CronJob",
    "HorizontalPodAutoscaler",
    "VerticalPodAutoscaler",
    "Ingress",
    "NetworkPolicy",
]

# Fields owned by the API server; never part of a desired state comparison
SERVER_MANAGED_METADATA = (
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "managedFields",
    "selfLink",
)

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "kubegate"

DEFAULT_NAMESPACE = "default"
DEFAULT_KUBERNETES_VERSION = "1.28"
