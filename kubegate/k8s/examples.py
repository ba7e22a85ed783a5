"""Example manifests used by the demo command and the tests.

The shop bundle exercises most of what the guides cover: a Namespace, a
Deployment with an init container and a native sidecar, a Service, an HPA
and namespace-scoped RBAC for a deployer service account.
"""

from kubegate.k8s.artifact import ManifestBundle

NAMESPACE_YAML = """apiVersion: v1
kind: Namespace
metadata:
  name: shop
"""

WEB_YAML = """# Storefront: init container runs migrations, sidecar ships logs
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: shop
  labels:
    app.kubernetes.io/name: web
    env: production
spec:
  selector:
    matchLabels:
      app: web
  template:
    metadata:
      labels:
        app: web
        env: production
    spec:
      serviceAccountName: deployer
      securityContext:
        runAsNonRoot: true
      initContainers:
      - name: migrate
        image: ghcr.io/example/shop-migrate:1.4.2
        command: ["./migrate", "up"]
        securityContext:
          allowPrivilegeEscalation: false
          capabilities:
            drop: [ALL]
      - name: log-shipper
        image: fluent/fluent-bit:2.2.0
        restartPolicy: Always
        securityContext:
          allowPrivilegeEscalation: false
          capabilities:
            drop: [ALL]
        resources:
          requests:
            cpu: 50m
            memory: 64Mi
          limits:
            cpu: 100m
            memory: 128Mi
      containers:
      - name: web
        image: ghcr.io/example/shop-web:1.4.2
        ports:
        - containerPort: 8080
          name: http
        readinessProbe:
          httpGet:
            path: /healthz
            port: http
        livenessProbe:
          httpGet:
            path: /livez
            port: http
        securityContext:
          allowPrivilegeEscalation: false
          capabilities:
            drop: [ALL]
        resources:
          requests:
            cpu: 250m
            memory: 256Mi
          limits:
            cpu: 500m
            memory: 512Mi
---
apiVersion: v1
kind: Service
metadata:
  name: web
  namespace: shop
spec:
  selector:
    app: web
  ports:
  - name: http
    port: 80
    targetPort: http
---
apiVersion: autoscaling/v2
kind: HorizontalPodAutoscaler
metadata:
  name: web
  namespace: shop
spec:
  scaleTargetRef:
    apiVersion: apps/v1
    kind: Deployment
    name: web
  minReplicas: 2
  maxReplicas: 10
  metrics:
  - type: Resource
    resource:
      name: cpu
      target:
        type: Utilization
        averageUtilization: 70
"""

RBAC_YAML = """apiVersion: v1
kind: ServiceAccount
metadata:
  name: deployer
  namespace: shop
---
apiVersion: rbac.authorization.k8s.io/v1
kind: Role
metadata:
  name: app-reader
  namespace: shop
rules:
- apiGroups: ["apps"]
  resources: ["deployments"]
  verbs: ["get", "list", "watch"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: RoleBinding
metadata:
  name: deployer-app-reader
  namespace: shop
subjects:
- kind: ServiceAccount
  name: deployer
  namespace: shop
roleRef:
  apiGroup: rbac.authorization.k8s.io
  kind: Role
  name: app-reader
"""

# Live cluster: the platform team administers everything, developers may
# only manage workloads inside the shop namespace.
SNAPSHOT_YAML = """apiVersion: v1
kind: List
items:
- apiVersion: rbac.authorization.k8s.io/v1
  kind: ClusterRoleBinding
  metadata:
    name: platform-admins
  subjects:
  - kind: Group
    name: platform
    apiGroup: rbac.authorization.k8s.io
  roleRef:
    apiGroup: rbac.authorization.k8s.io
    kind: ClusterRole
    name: cluster-admin
- apiVersion: rbac.authorization.k8s.io/v1
  kind: ClusterRole
  metadata:
    name: workload-editor
  rules:
  - apiGroups: ["apps", "autoscaling"]
    resources: ["deployments", "horizontalpodautoscalers"]
    verbs: ["get", "list", "create", "patch", "delete"]
  - apiGroups: [""]
    resources: ["services"]
    verbs: ["get", "list", "create", "patch", "delete"]
- apiVersion: rbac.authorization.k8s.io/v1
  kind: ClusterRoleBinding
  metadata:
    name: developers-workload-editor
  subjects:
  - kind: Group
    name: developers
    apiGroup: rbac.authorization.k8s.io
  roleRef:
    apiGroup: rbac.authorization.k8s.io
    kind: ClusterRole
    name: workload-editor
"""


def shop_bundle() -> ManifestBundle:
    """The demo bundle as a ManifestBundle."""
    return ManifestBundle(files={
        "namespace.yaml": NAMESPACE_YAML,
        "web.yaml": WEB_YAML,
        "rbac.yaml": RBAC_YAML,
    })
