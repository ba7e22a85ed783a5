"""K8s oracles for manifest validation.

This module implements the validating admission checks. Each oracle is a
callable class taking a ManifestBundle and returning Violations; problems in
the manifests never raise, they become violations with evidence describing
the offending values.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import kubernetes_validate

from kubegate.core.errors import ManifestLoadError
from kubegate.core.schema.violation import Violation
from kubegate.k8s.artifact import KindRegistry, ManifestBundle, ManifestObject, ref_for
from kubegate.k8s.constants import (
    DEFAULT_KUBERNETES_VERSION,
    DEFAULT_NAMESPACE,
    LONG_RUNNING_KINDS,
    POD_BEARING_KINDS,
    SCALABLE_KINDS,
)
from kubegate.k8s.utils import (
    get_containers,
    get_labels,
    get_pod_spec,
    get_pod_template_labels,
    get_sidecar_containers,
    match_labels,
    parse_quantity,
)

logger = logging.getLogger(__name__)

_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_DNS1123_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_LABEL_NAME = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
_LABEL_VALUE = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")

# Kinds whose names must be DNS-1123 labels rather than subdomains
_LABEL_NAMED_KINDS = {"Namespace", "Service"}

# Built-in ClusterRoles every cluster ships with
BUILTIN_CLUSTER_ROLES = {"cluster-admin", "admin", "edit", "view"}


def _where(obj: ManifestObject, *fields: str) -> List[str]:
    """Violation path: file, object, then field names."""
    return [obj.source, f"{obj.kind or '?'}/{obj.name or '?'}", *fields]


def _image_registry_path(image: str) -> str:
    """Fully qualified repository for an image reference (without tag or digest)."""
    repo = image.split("@", 1)[0]
    last = repo.rsplit("/", 1)[-1]
    if ":" in last:
        repo = repo[: len(repo) - len(last)] + last.split(":", 1)[0]
    first = repo.split("/", 1)[0]
    if "/" not in repo:
        return f"docker.io/library/{repo}"
    if "." in first or ":" in first or first == "localhost":
        return repo
    return f"docker.io/{repo}"


def _image_tag(image: str) -> Tuple[Optional[str], bool]:
    """Return (tag, pinned_by_digest) for an image reference."""
    if "@" in image:
        return None, True
    last = image.rsplit("/", 1)[-1]
    if ":" in last:
        return last.split(":", 1)[1], False
    return None, False


class StructureOracle:
    """Structural checks every manifest must pass.

    - apiVersion, kind and metadata.name present
    - names follow DNS-1123 rules, namespaces are DNS-1123 labels
    - label keys and values are syntactically valid
    - no object identity appears twice in the bundle
    """

    def __init__(self, default_namespace: str = DEFAULT_NAMESPACE):
        self.default_namespace = default_namespace

    def __call__(self, bundle: ManifestBundle) -> List[Violation]:
        try:
            objects = bundle.objects()
        except ManifestLoadError as e:
            return [Violation(
                id="structure.INVALID_YAML",
                message=str(e),
                path=[e.source or "?"],
                severity="error",
            )]

        violations: List[Violation] = []
        registry = KindRegistry()
        registry.register_from(obj.body for obj in objects)
        seen: Dict[Tuple[str, str, str, str], ManifestObject] = {}

        for obj in objects:
            body = obj.body
            metadata = body.get("metadata") or {}
            missing = False

            if not body.get("apiVersion"):
                violations.append(Violation(
                    id="structure.MISSING_API_VERSION",
                    message=f"Document {obj.location()} has no apiVersion",
                    path=_where(obj, "apiVersion"),
                ))
                missing = True
            if not body.get("kind"):
                violations.append(Violation(
                    id="structure.MISSING_KIND",
                    message=f"Document {obj.location()} has no kind",
                    path=_where(obj, "kind"),
                ))
                missing = True
            if not metadata.get("name"):
                violations.append(Violation(
                    id="structure.MISSING_NAME",
                    message=f"Document {obj.location()} has no metadata.name",
                    path=_where(obj, "metadata", "name"),
                    evidence={"generateName": metadata.get("generateName")} if metadata.get("generateName") else None,
                ))
                missing = True
            else:
                violations.extend(self._check_name(obj, str(metadata["name"])))

            namespace = metadata.get("namespace")
            if namespace is not None and not _DNS1123_LABEL.match(str(namespace)):
                violations.append(Violation(
                    id="structure.INVALID_NAMESPACE",
                    message=f"Namespace '{namespace}' is not a valid DNS-1123 label",
                    path=_where(obj, "metadata", "namespace"),
                    evidence={"namespace": namespace},
                ))

            violations.extend(self._check_labels(obj, metadata.get("labels") or {}))

            if missing:
                continue
            ref = ref_for(body, self.default_namespace, registry)
            previous = seen.get(ref.key())
            if previous is not None:
                violations.append(Violation(
                    id="structure.DUPLICATE_OBJECT",
                    message=f"{ref} is defined twice ({previous.location()} and {obj.location()})",
                    path=_where(obj),
                    evidence={"first": previous.location(), "second": obj.location()},
                ))
            else:
                seen[ref.key()] = obj

        return violations

    def _check_name(self, obj: ManifestObject, name: str) -> List[Violation]:
        if obj.kind in _LABEL_NAMED_KINDS:
            valid = len(name) <= 63 and bool(_DNS1123_LABEL.match(name))
            rule = "DNS-1123 label"
        elif obj.kind in ("Role", "ClusterRole", "RoleBinding", "ClusterRoleBinding"):
            # RBAC names are path segments: anything without "/" or "%"
            valid = bool(name) and "/" not in name and "%" not in name and name not in (".", "..")
            rule = "path segment name"
        else:
            valid = len(name) <= 253 and bool(_DNS1123_SUBDOMAIN.match(name))
            rule = "DNS-1123 subdomain"
        if valid:
            return []
        return [Violation(
            id="structure.INVALID_NAME",
            message=f"{obj.kind} name '{name}' is not a valid {rule}",
            path=_where(obj, "metadata", "name"),
            evidence={"name": name, "rule": rule},
        )]

    def _check_labels(self, obj: ManifestObject, labels: Dict[str, Any]) -> List[Violation]:
        violations = []
        for key, value in labels.items():
            prefix, _, name = str(key).rpartition("/")
            key_ok = (
                0 < len(name) <= 63
                and bool(_LABEL_NAME.match(name))
                and (not prefix or (len(prefix) <= 253 and bool(_DNS1123_SUBDOMAIN.match(prefix))))
            )
            value_str = "" if value is None else str(value)
            value_ok = len(value_str) <= 63 and bool(_LABEL_VALUE.match(value_str))
            if not key_ok or not value_ok:
                violations.append(Violation(
                    id="structure.INVALID_LABEL",
                    message=f"Label {key}={value_str} is not valid",
                    path=_where(obj, "metadata", "labels", str(key)),
                    evidence={"key": key, "value": value_str, "key_valid": key_ok, "value_valid": value_ok},
                ))
        return violations


class SchemaOracle:
    """K8s schema validation oracle.

    Validates each object against the upstream OpenAPI schema bundled with
    the kubernetes-validate library. Kinds with no bundled schema (custom
    resources, mesh and monitoring CRDs) are reported as info.
    """

    def __init__(self, kubernetes_version: str = DEFAULT_KUBERNETES_VERSION, strict: bool = False):
        """Initialize SchemaOracle.

        Args:
            kubernetes_version: Kubernetes minor version whose schemas to use (e.g. "1.28")
            strict: If True, fields unknown to the schema are errors
        """
        self.kubernetes_version = kubernetes_version
        self.strict = strict

    def __call__(self, bundle: ManifestBundle) -> List[Violation]:
        violations = []
        for obj in bundle.objects():
            if not obj.body.get("apiVersion") or not obj.body.get("kind"):
                # Reported by StructureOracle
                continue
            violations.extend(self._validate_object(obj))
        return violations

    def _validate_object(self, obj: ManifestObject) -> List[Violation]:
        try:
            kubernetes_validate.validate(obj.body, self.kubernetes_version, self.strict)
        except kubernetes_validate.SchemaNotFoundError:
            logger.debug(f"No schema for {obj.body.get('apiVersion')} {obj.kind}, skipping")
            return [Violation(
                id="schema.SCHEMA_NOT_FOUND",
                message=f"No schema for {obj.body.get('apiVersion')} {obj.kind} in Kubernetes {self.kubernetes_version}",
                path=_where(obj),
                severity="info",
                evidence={"apiVersion": obj.body.get("apiVersion"), "kind": obj.kind},
            )]
        except kubernetes_validate.ValidationError as e:
            field_path = [str(p) for p in getattr(e, "path", [])]
            message = getattr(e, "message", str(e))
            return [Violation(
                id="schema.VALIDATION_ERROR",
                message=f"{'.'.join(field_path) or '<root>'}: {message}",
                path=_where(obj, *field_path),
                evidence={"error": message, "kubernetes_version": self.kubernetes_version},
            )]
        return []


class PolicyOracle:
    """Organisation policy oracle.

    Implements policies like:
    - Workloads carry the required labels
    - Image tags are pinned (no :latest, no implicit latest; digests accepted)
    - Images come from an allowed registry (when an allow-list is configured)
    - Production workloads run at least min_replicas replicas
    """

    def __init__(
        self,
        required_labels: Optional[List[str]] = None,
        env_label: str = "env",
        production_envs: Optional[List[str]] = None,
        min_replicas: int = 2,
        allowed_registries: Optional[List[str]] = None,
    ):
        self.required_labels = list(required_labels) if required_labels is not None else ["app.kubernetes.io/name"]
        self.env_label = env_label
        self.production_envs = set(production_envs) if production_envs is not None else {"production", "prod"}
        self.min_replicas = min_replicas
        self.allowed_registries = [r.rstrip("/") for r in (allowed_registries or [])]

    def __call__(self, bundle: ManifestBundle) -> List[Violation]:
        violations = []

        for obj in bundle.objects():
            manifest = obj.body
            if obj.kind not in POD_BEARING_KINDS:
                continue

            labels = get_labels(manifest)
            for label in self.required_labels:
                if not labels.get(label):
                    violations.append(Violation(
                        id="policy.MISSING_LABEL",
                        message=f"{obj.kind} {obj.name} requires label '{label}'",
                        path=_where(obj, "metadata", "labels"),
                        evidence={"missing_label": label},
                    ))

            for container in get_containers(manifest, include_init=True):
                violations.extend(self._check_image(obj, container))

            env = get_pod_template_labels(manifest).get(self.env_label) or labels.get(self.env_label)
            replicas = (manifest.get("spec") or {}).get("replicas")
            if (
                env in self.production_envs
                and obj.kind in SCALABLE_KINDS
                and replicas is not None
                and replicas < self.min_replicas
            ):
                violations.append(Violation(
                    id="policy.PRODUCTION_REPLICA_COUNT",
                    message=f"{self.env_label}={env} requires at least {self.min_replicas} replicas, got {replicas}",
                    path=_where(obj, "spec", "replicas"),
                    evidence={"env": env, "replicas": replicas, "min_replicas": self.min_replicas},
                ))

        return violations

    def _check_image(self, obj: ManifestObject, container: dict) -> List[Violation]:
        violations = []
        name = container.get("name", "unknown")
        image = str(container.get("image") or "")
        path = _where(obj, "containers", name, "image")

        if not image:
            return [Violation(
                id="policy.IMAGE_MISSING",
                message=f"Container {name} has no image",
                path=path,
                evidence={"container": name},
            )]

        tag, by_digest = _image_tag(image)
        if not by_digest:
            if tag is None:
                violations.append(Violation(
                    id="policy.IMAGE_TAG_MISSING",
                    message=f"Container {name} image {image} has no tag (implies :latest)",
                    path=path,
                    evidence={"container": name, "image": image},
                ))
            elif tag == "latest":
                violations.append(Violation(
                    id="policy.IMAGE_TAG_LATEST",
                    message=f"Container {name} uses mutable tag :latest ({image})",
                    path=path,
                    evidence={"container": name, "image": image},
                ))

        if self.allowed_registries:
            repository = _image_registry_path(image)
            allowed = any(
                repository == registry or repository.startswith(registry + "/")
                for registry in self.allowed_registries
            )
            if not allowed:
                violations.append(Violation(
                    id="policy.IMAGE_REGISTRY_NOT_ALLOWED",
                    message=f"Container {name} image {image} is not from an allowed registry",
                    path=path,
                    evidence={
                        "container": name,
                        "image": image,
                        "repository": repository,
                        "allowed_registries": list(self.allowed_registries),
                    },
                ))
        return violations


class SecurityOracle:
    """Security baseline oracle for K8s manifests.

    Checks that every container (init containers included) runs as non-root,
    cannot escalate privileges, is not privileged and drops all capabilities,
    and that pods do not share host namespaces.
    """

    def __call__(self, bundle: ManifestBundle) -> List[Violation]:
        violations = []

        for obj in bundle.objects():
            if obj.kind not in POD_BEARING_KINDS:
                continue
            pod_spec = get_pod_spec(obj.body) or {}
            pod_ctx = pod_spec.get("securityContext") or {}

            for host_field in ("hostNetwork", "hostPID", "hostIPC"):
                if pod_spec.get(host_field):
                    violations.append(Violation(
                        id="security.HOST_NAMESPACE",
                        message=f"{obj.kind} {obj.name} sets {host_field}=true",
                        path=_where(obj, "spec", host_field),
                        evidence={"field": host_field},
                    ))

            for container in get_containers(obj.body, include_init=True):
                violations.extend(self._check_container(obj, container, pod_ctx))

        return violations

    def _check_container(self, obj: ManifestObject, container: dict, pod_ctx: dict) -> List[Violation]:
        violations = []
        sec_ctx = container.get("securityContext") or {}
        container_name = container.get("name", "unknown")
        path = _where(obj, "containers", container_name, "securityContext")

        run_as_non_root = sec_ctx.get("runAsNonRoot", pod_ctx.get("runAsNonRoot"))
        if not run_as_non_root:
            violations.append(Violation(
                id="security.NO_RUN_AS_NON_ROOT",
                message=f"Container {container_name} must set runAsNonRoot=true",
                path=path,
                evidence={"container": container_name},
            ))

        if sec_ctx.get("allowPrivilegeEscalation") is not False:
            violations.append(Violation(
                id="security.PRIVILEGE_ESCALATION",
                message=f"Container {container_name} must set allowPrivilegeEscalation=false",
                path=path,
                evidence={"container": container_name},
            ))

        if sec_ctx.get("privileged"):
            violations.append(Violation(
                id="security.PRIVILEGED",
                message=f"Container {container_name} must not run privileged",
                path=path,
                evidence={"container": container_name},
            ))

        drop = [str(c).upper() for c in ((sec_ctx.get("capabilities") or {}).get("drop") or [])]
        if "ALL" not in drop:
            violations.append(Violation(
                id="security.CAPABILITIES_NOT_DROPPED",
                message=f"Container {container_name} must drop ALL capabilities",
                path=path,
                evidence={"container": container_name, "drop": drop},
            ))

        return violations


class ResourceOracle:
    """Resource requests/limits oracle.

    Main containers and native sidecars must declare CPU and memory requests
    and limits, and no limit may be below its request.
    """

    RESOURCES = ("cpu", "memory")

    def __call__(self, bundle: ManifestBundle) -> List[Violation]:
        violations = []

        for obj in bundle.objects():
            if obj.kind not in POD_BEARING_KINDS:
                continue
            containers = get_containers(obj.body) + get_sidecar_containers(obj.body)
            for container in containers:
                violations.extend(self._check_container(obj, container))

        return violations

    def _check_container(self, obj: ManifestObject, container: dict) -> List[Violation]:
        violations = []
        name = container.get("name", "unknown")
        resources = container.get("resources") or {}
        requests = resources.get("requests") or {}
        limits = resources.get("limits") or {}
        path = _where(obj, "containers", name, "resources")

        parsed: Dict[str, Dict[str, Any]] = {"requests": {}, "limits": {}}
        for section, values in (("requests", requests), ("limits", limits)):
            for resource in self.RESOURCES:
                if resource not in values:
                    violations.append(Violation(
                        id=f"resources.MISSING_{section.upper()}",
                        message=f"Container {name} has no {resource} {section[:-1]}",
                        path=path + [section, resource],
                        evidence={"container": name, "resource": resource},
                    ))
                    continue
                try:
                    parsed[section][resource] = parse_quantity(values[resource])
                except ValueError:
                    violations.append(Violation(
                        id="resources.INVALID_QUANTITY",
                        message=f"Container {name} {section}.{resource} '{values[resource]}' is not a valid quantity",
                        path=path + [section, resource],
                        evidence={"container": name, "resource": resource, "value": str(values[resource])},
                    ))

        for resource in self.RESOURCES:
            request = parsed["requests"].get(resource)
            limit = parsed["limits"].get(resource)
            if request is not None and limit is not None and limit < request:
                violations.append(Violation(
                    id="resources.LIMIT_BELOW_REQUEST",
                    message=f"Container {name} {resource} limit {limits[resource]} is below request {requests[resource]}",
                    path=path + ["limits", resource],
                    evidence={
                        "container": name,
                        "resource": resource,
                        "request": str(requests[resource]),
                        "limit": str(limits[resource]),
                    },
                ))

        return violations


class ProbeOracle:
    """Health probe oracle.

    Long-running workloads should define readiness and liveness probes on
    their main containers. Missing probes are warnings.
    """

    def __call__(self, bundle: ManifestBundle) -> List[Violation]:
        violations = []
        for obj in bundle.objects():
            if obj.kind not in LONG_RUNNING_KINDS:
                continue
            for container in get_containers(obj.body):
                name = container.get("name", "unknown")
                for probe, code in (("readinessProbe", "MISSING_READINESS_PROBE"),
                                    ("livenessProbe", "MISSING_LIVENESS_PROBE")):
                    if not container.get(probe):
                        violations.append(Violation(
                            id=f"probes.{code}",
                            message=f"Container {name} in {obj.kind} {obj.name} has no {probe}",
                            path=_where(obj, "containers", name, probe),
                            severity="warning",
                            evidence={"container": name},
                        ))
        return violations


class ReferenceOracle:
    """Cross-resource consistency oracle.

    Resolves references between objects in the bundle and, when a cluster
    snapshot is given, live objects:
    - Service selectors match some workload's pod labels
    - HPA targets exist, bounds are sane, and do not fight a VPA or fixed replicas
    - Ingress backends name existing Services and exposed ports
    - RoleBinding / ClusterRoleBinding roleRefs exist
    - Pods reference existing ServiceAccounts, ConfigMaps, Secrets and PVCs
    """

    def __init__(self, cluster: Optional[Any] = None, default_namespace: str = DEFAULT_NAMESPACE):
        """Initialize ReferenceOracle.

        Args:
            cluster: Optional ClusterState whose live objects also satisfy references
            default_namespace: Namespace assumed for namespaced objects without one
        """
        self.cluster = cluster
        self.default_namespace = default_namespace

    def __call__(self, bundle: ManifestBundle) -> List[Violation]:
        objects = bundle.objects()
        registry = KindRegistry()
        registry.register_from(obj.body for obj in objects)

        index: Dict[Tuple[str, str, str], dict] = {}
        for body in self._live_bodies():
            self._add(index, body, registry)
        for obj in objects:
            self._add(index, obj.body, registry)

        violations: List[Violation] = []
        for obj in objects:
            namespace = ref_for(obj.body, self.default_namespace, registry).namespace or ""
            if obj.kind == "Service":
                violations.extend(self._check_service(obj, namespace, index))
            elif obj.kind == "HorizontalPodAutoscaler":
                violations.extend(self._check_hpa(obj, namespace, index))
            elif obj.kind == "Ingress":
                violations.extend(self._check_ingress(obj, namespace, index))
            elif obj.kind in ("RoleBinding", "ClusterRoleBinding"):
                violations.extend(self._check_binding(obj, namespace, index))
            if obj.kind in POD_BEARING_KINDS:
                violations.extend(self._check_pod_refs(obj, namespace, index))
        return violations

    def _live_bodies(self) -> Iterable[dict]:
        if self.cluster is None:
            return []
        return self.cluster.bodies()

    def _add(self, index: Dict[Tuple[str, str, str], dict], body: dict, registry: KindRegistry) -> None:
        ref = ref_for(body, self.default_namespace, registry)
        index[(ref.kind, ref.namespace or "", ref.name)] = body

    @staticmethod
    def _find(index, kind: str, namespace: str, name: str) -> Optional[dict]:
        return index.get((kind, namespace, name))

    def _check_service(self, obj, namespace, index) -> List[Violation]:
        spec = obj.body.get("spec") or {}
        selector = spec.get("selector") or {}
        if not selector or spec.get("type") == "ExternalName":
            return []
        for (kind, ns, _), body in index.items():
            if ns == namespace and kind in POD_BEARING_KINDS and match_labels(selector, get_pod_template_labels(body)):
                return []
        return [Violation(
            id="references.SERVICE_SELECTOR_NO_MATCH",
            message=f"Service {obj.name} selector {dict(selector)} matches no workload in namespace {namespace}",
            path=_where(obj, "spec", "selector"),
            severity="warning",
            evidence={"selector": dict(selector), "namespace": namespace},
        )]

    def _check_hpa(self, obj, namespace, index) -> List[Violation]:
        violations = []
        spec = obj.body.get("spec") or {}
        target = spec.get("scaleTargetRef") or {}
        target_kind = target.get("kind", "")
        target_name = target.get("name", "")

        min_replicas = spec.get("minReplicas", 1)
        max_replicas = spec.get("maxReplicas")
        if max_replicas is not None and min_replicas > max_replicas:
            violations.append(Violation(
                id="references.HPA_MIN_GT_MAX",
                message=f"HPA {obj.name} minReplicas {min_replicas} exceeds maxReplicas {max_replicas}",
                path=_where(obj, "spec", "minReplicas"),
                evidence={"minReplicas": min_replicas, "maxReplicas": max_replicas},
            ))

        workload = self._find(index, target_kind, namespace, target_name)
        if workload is None:
            violations.append(Violation(
                id="references.HPA_TARGET_NOT_FOUND",
                message=f"HPA {obj.name} targets {target_kind}/{target_name} which does not exist",
                path=_where(obj, "spec", "scaleTargetRef"),
                evidence={"kind": target_kind, "name": target_name, "namespace": namespace},
            ))
            return violations

        if target_kind not in SCALABLE_KINDS:
            violations.append(Violation(
                id="references.HPA_TARGET_NOT_SCALABLE",
                message=f"HPA {obj.name} targets {target_kind}, which has no scale subresource",
                path=_where(obj, "spec", "scaleTargetRef", "kind"),
                evidence={"kind": target_kind},
            ))

        if (workload.get("spec") or {}).get("replicas") is not None:
            violations.append(Violation(
                id="references.HPA_TARGET_SETS_REPLICAS",
                message=(
                    f"{target_kind} {target_name} sets spec.replicas while HPA {obj.name} manages it; "
                    f"every apply will reset the autoscaled count"
                ),
                path=_where(obj, "spec", "scaleTargetRef"),
                severity="warning",
                evidence={"kind": target_kind, "name": target_name},
            ))

        for (kind, ns, vpa_name), vpa in index.items():
            if kind != "VerticalPodAutoscaler" or ns != namespace:
                continue
            vpa_spec = vpa.get("spec") or {}
            vpa_target = vpa_spec.get("targetRef") or {}
            mode = (vpa_spec.get("updatePolicy") or {}).get("updateMode", "Auto")
            if vpa_target.get("kind") == target_kind and vpa_target.get("name") == target_name and mode in ("Auto", "Recreate"):
                violations.append(Violation(
                    id="references.HPA_VPA_CONFLICT",
                    message=f"HPA {obj.name} and VPA {vpa_name} ({mode}) both act on {target_kind}/{target_name}",
                    path=_where(obj, "spec", "scaleTargetRef"),
                    severity="warning",
                    evidence={"hpa": obj.name, "vpa": vpa_name, "updateMode": mode},
                ))
        return violations

    def _ingress_backends(self, spec: dict) -> List[Tuple[List[str], dict]]:
        backends = []
        if spec.get("defaultBackend"):
            backends.append((["spec", "defaultBackend"], spec["defaultBackend"]))
        for i, rule in enumerate(spec.get("rules") or []):
            for j, path in enumerate(((rule.get("http") or {}).get("paths")) or []):
                if path.get("backend"):
                    backends.append((["spec", "rules", str(i), "http", "paths", str(j), "backend"], path["backend"]))
        return backends

    def _check_ingress(self, obj, namespace, index) -> List[Violation]:
        violations = []
        for field_path, backend in self._ingress_backends(obj.body.get("spec") or {}):
            service_ref = backend.get("service")
            if not service_ref:
                continue
            service_name = service_ref.get("name", "")
            service = self._find(index, "Service", namespace, service_name)
            if service is None:
                violations.append(Violation(
                    id="references.INGRESS_BACKEND_NOT_FOUND",
                    message=f"Ingress {obj.name} routes to Service {service_name} which does not exist",
                    path=_where(obj, *field_path),
                    evidence={"service": service_name, "namespace": namespace},
                ))
                continue
            port = service_ref.get("port") or {}
            ports = (service.get("spec") or {}).get("ports") or []
            if "number" in port:
                exposed = any(p.get("port") == port["number"] for p in ports)
                wanted = port["number"]
            elif "name" in port:
                exposed = any(p.get("name") == port["name"] for p in ports)
                wanted = port["name"]
            else:
                continue
            if not exposed:
                violations.append(Violation(
                    id="references.INGRESS_PORT_NOT_EXPOSED",
                    message=f"Ingress {obj.name} routes to port {wanted} which Service {service_name} does not expose",
                    path=_where(obj, *field_path, "service", "port"),
                    evidence={"service": service_name, "port": wanted},
                ))
        return violations

    def _check_binding(self, obj, namespace, index) -> List[Violation]:
        role_ref = obj.body.get("roleRef") or {}
        kind = role_ref.get("kind", "")
        name = role_ref.get("name", "")
        if kind == "ClusterRole":
            if name in BUILTIN_CLUSTER_ROLES or name.startswith("system:"):
                return []
            found = self._find(index, "ClusterRole", "", name)
        elif kind == "Role" and obj.kind == "RoleBinding":
            found = self._find(index, "Role", namespace, name)
        else:
            return [Violation(
                id="references.INVALID_ROLE_REF",
                message=f"{obj.kind} {obj.name} cannot reference a {kind or 'missing kind'}",
                path=_where(obj, "roleRef", "kind"),
                evidence={"kind": kind},
            )]
        if found is not None:
            return []
        return [Violation(
            id="references.ROLE_REF_NOT_FOUND",
            message=f"{obj.kind} {obj.name} references {kind} {name} which does not exist",
            path=_where(obj, "roleRef"),
            evidence={"kind": kind, "name": name},
        )]

    def _check_pod_refs(self, obj, namespace, index) -> List[Violation]:
        pod_spec = get_pod_spec(obj.body) or {}
        wanted: List[Tuple[str, str, List[str]]] = []

        service_account = pod_spec.get("serviceAccountName")
        if service_account and service_account != "default":
            wanted.append(("ServiceAccount", service_account, ["spec", "serviceAccountName"]))

        for volume in pod_spec.get("volumes") or []:
            vname = volume.get("name", "?")
            if volume.get("configMap") and not volume["configMap"].get("optional"):
                wanted.append(("ConfigMap", volume["configMap"].get("name", ""), ["volumes", vname]))
            if volume.get("secret") and not volume["secret"].get("optional"):
                wanted.append(("Secret", volume["secret"].get("secretName", ""), ["volumes", vname]))
            if volume.get("persistentVolumeClaim"):
                wanted.append(("PersistentVolumeClaim", volume["persistentVolumeClaim"].get("claimName", ""), ["volumes", vname]))

        for container in get_containers(obj.body, include_init=True):
            cname = container.get("name", "?")
            for source in container.get("envFrom") or []:
                for key, kind in (("configMapRef", "ConfigMap"), ("secretRef", "Secret")):
                    ref = source.get(key)
                    if ref and not ref.get("optional"):
                        wanted.append((kind, ref.get("name", ""), ["containers", cname, "envFrom"]))
            for env in container.get("env") or []:
                value_from = env.get("valueFrom") or {}
                for key, kind in (("configMapKeyRef", "ConfigMap"), ("secretKeyRef", "Secret")):
                    ref = value_from.get(key)
                    if ref and not ref.get("optional"):
                        wanted.append((kind, ref.get("name", ""), ["containers", cname, "env", env.get("name", "?")]))

        violations = []
        reported = set()
        for kind, name, field_path in wanted:
            if (kind, name) in reported or self._find(index, kind, namespace, name) is not None:
                continue
            reported.add((kind, name))
            violations.append(Violation(
                id="references.MISSING_DEPENDENCY",
                message=f"{obj.kind} {obj.name} references {kind} {name} which does not exist in namespace {namespace}",
                path=_where(obj, *field_path),
                severity="warning",
                evidence={"kind": kind, "name": name, "namespace": namespace},
            ))
        return violations
