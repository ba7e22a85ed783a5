"""K8s manifest bundle implementation.

This module provides ManifestBundle, the unit every check, mutation and
planning step works on: one or more YAML files, each holding one or more
``---`` separated Kubernetes documents. It also defines ObjectRef, the
identity used to match desired objects with live cluster objects.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubegate.core.errors import ManifestLoadError
from kubegate.k8s.constants import DEFAULT_NAMESPACE, KNOWN_KINDS

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def create_yaml_instance() -> YAML:
    """Create configured ruamel.yaml instance for K8s manifest editing.

    Returns:
        YAML instance configured to:
        - Preserve quotes and formatting
        - Not wrap long strings (prevents image field splitting)
        - Use block style (not flow style)
    """
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.width = 4096
    yaml.default_flow_style = False
    yaml.allow_unicode = True
    return yaml


def to_plain(value: Any) -> Any:
    """Convert ruamel round-trip containers and scalars to plain Python types."""
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, bool):
        return bool(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    if isinstance(value, str):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def load_yaml_documents(text: str, source: str = "<string>") -> List[Any]:
    """Load every document of a YAML stream.

    Raises:
        ManifestLoadError: If the stream is not valid YAML
    """
    yaml = create_yaml_instance()
    try:
        return [doc for doc in yaml.load_all(text)]
    except YAMLError as e:
        raise ManifestLoadError(f"Failed to parse YAML in {source}: {e}", source=source) from e


def dump_yaml_documents(documents: Iterable[Any]) -> str:
    """Serialize documents to a ``---`` separated YAML stream."""
    yaml = create_yaml_instance()
    stream = StringIO()
    yaml.dump_all(list(documents), stream)
    return stream.getvalue()


class KindRegistry:
    """Resolves a kind to its REST resource name, API group and scope.

    Starts from the built-in table and learns custom kinds from
    CustomResourceDefinitions.
    """

    def __init__(self):
        self._kinds: Dict[Tuple[str, str], Tuple[str, bool]] = {}
        self._by_kind: Dict[str, Tuple[str, str, bool]] = {}
        for kind, (plural, group, namespaced) in KNOWN_KINDS.items():
            self.register(kind, plural, group, namespaced)

    def register(self, kind: str, plural: str, group: str, namespaced: bool) -> None:
        self._kinds[(group, kind)] = (plural, namespaced)
        self._by_kind.setdefault(kind, (plural, group, namespaced))

    def register_crd(self, crd: dict) -> None:
        spec = crd.get("spec") or {}
        names = spec.get("names") or {}
        kind = names.get("kind")
        if not kind:
            return
        plural = names.get("plural") or kind.lower() + "s"
        namespaced = spec.get("scope", "Namespaced") != "Cluster"
        self.register(kind, plural, spec.get("group", ""), namespaced)
        logger.debug(f"Registered custom kind {kind} ({plural}.{spec.get('group', '')})")

    def register_from(self, bodies: Iterable[dict]) -> None:
        for body in bodies:
            if body.get("kind") == "CustomResourceDefinition":
                self.register_crd(body)

    def resolve(self, kind: str, group: Optional[str] = None) -> Tuple[str, str, bool]:
        """Return (plural resource, api group, namespaced) for a kind."""
        if group is not None and (group, kind) in self._kinds:
            plural, namespaced = self._kinds[(group, kind)]
            return plural, group, namespaced
        if kind in self._by_kind:
            plural, known_group, namespaced = self._by_kind[kind]
            # a known kind served from another group version (e.g. extensions/v1beta1 Ingress)
            return plural, known_group if group is None else group, namespaced
        return kind.lower() + "s", group or "", True

    def is_namespaced(self, kind: str, group: Optional[str] = None) -> bool:
        return self.resolve(kind, group)[2]

    def resource_for(self, kind: str, group: Optional[str] = None) -> str:
        return self.resolve(kind, group)[0]


def is_list_document(body: dict) -> bool:
    kind = str(body.get("kind") or "")
    return kind == "List" or (kind.endswith("List") and isinstance(body.get("items"), list))


def split_api_version(api_version: str) -> Tuple[str, str]:
    """Split "apps/v1" into ("apps", "v1"); core "v1" gives ("", "v1")."""
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


@dataclass(frozen=True)
class ObjectRef:
    """Identity of a Kubernetes object.

    The API version is carried for display and authorization but is not part
    of identity: apps/v1 and apps/v1beta1 Deployments with the same name are
    the same object.
    """

    api_version: str
    kind: str
    namespace: Optional[str]
    name: str

    @property
    def group(self) -> str:
        return split_api_version(self.api_version)[0]

    def key(self) -> Tuple[str, str, str, str]:
        return (self.group, self.kind, self.namespace or "", self.name)

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


def ref_for(
    body: dict,
    default_namespace: str = DEFAULT_NAMESPACE,
    registry: Optional[KindRegistry] = None,
) -> ObjectRef:
    """Build the ObjectRef for a manifest body.

    Cluster-scoped kinds always get namespace None; namespaced kinds without
    metadata.namespace get default_namespace.
    """
    registry = registry or KindRegistry()
    api_version = str(body.get("apiVersion") or "")
    kind = str(body.get("kind") or "")
    metadata = body.get("metadata") or {}
    group = split_api_version(api_version)[0]
    if registry.is_namespaced(kind, group):
        namespace = metadata.get("namespace") or default_namespace
    else:
        namespace = None
    return ObjectRef(api_version, kind, namespace, str(metadata.get("name") or ""))


@dataclass
class ManifestObject:
    """One document loaded from a bundle.

    Attributes:
        source: File path within the bundle
        index: Position of the document in its file (0-based, after List expansion)
        body: Manifest as plain dicts and lists
    """

    source: str
    index: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return str(self.body.get("kind") or "")

    @property
    def name(self) -> str:
        return str((self.body.get("metadata") or {}).get("name") or "")

    def location(self) -> str:
        return f"{self.source}#{self.index}"


@dataclass(frozen=True)
class ManifestBundle:
    """Kubernetes manifest bundle.

    Attributes:
        files: Mapping from file path to YAML content as string.
               Example: ``{"app.yaml": "apiVersion: apps/v1\\n..."}``

    Example:
        >>> bundle = ManifestBundle(files={"ns.yaml": "apiVersion: v1\\nkind: Namespace\\nmetadata:\\n  name: web\\n"})
        >>> [obj.kind for obj in bundle.objects()]
        ['Namespace']
    """

    files: Dict[str, str]

    def to_serializable(self) -> Dict:
        return {"files": dict(self.files)}

    def objects(self) -> List[ManifestObject]:
        """Load every document in the bundle.

        Empty documents are skipped and ``kind: List`` documents are expanded
        into their items.

        Raises:
            ManifestLoadError: If a file is not valid YAML or a document is not a mapping
        """
        result: List[ManifestObject] = []
        for filepath, content in self.files.items():
            index = 0
            for doc in load_yaml_documents(content, source=filepath):
                if doc is None:
                    continue
                if not isinstance(doc, dict):
                    raise ManifestLoadError(
                        f"Document {index} in {filepath} is not a mapping", source=filepath
                    )
                body = to_plain(doc)
                if is_list_document(body):
                    items = body.get("items") or []
                else:
                    items = [body]
                for item in items:
                    if not isinstance(item, dict):
                        raise ManifestLoadError(
                            f"List item in {filepath} is not a mapping", source=filepath
                        )
                    result.append(ManifestObject(source=filepath, index=index, body=item))
                    index += 1
        logger.debug(f"Loaded {len(result)} objects from {len(self.files)} files")
        return result

    def registry(self) -> KindRegistry:
        """Kind registry including custom kinds defined by CRDs in this bundle."""
        registry = KindRegistry()
        registry.register_from(obj.body for obj in self.objects())
        return registry

    def write_to_dir(self, dir_path: str) -> None:
        """Write YAML files to a directory, creating it if needed."""
        dir_path_obj = Path(dir_path)
        dir_path_obj.mkdir(parents=True, exist_ok=True)

        for rel_path, content in self.files.items():
            file_path = dir_path_obj / rel_path
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")

    @classmethod
    def from_file(cls, file_path: str) -> "ManifestBundle":
        """Load a bundle from a single YAML file."""
        path = Path(file_path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestLoadError(f"Cannot read {path}: {e}", source=str(path)) from e
        return cls(files={path.name: content})

    @classmethod
    def from_dir(cls, dir_path: str) -> "ManifestBundle":
        """Load every *.yaml / *.yml file below a directory, in sorted order."""
        root = Path(dir_path)
        files: Dict[str, str] = {}
        for path in sorted(root.rglob("*")):
            if path.is_file() and path.suffix in YAML_SUFFIXES:
                files[path.relative_to(root).as_posix()] = path.read_text(encoding="utf-8")
        if not files:
            logger.warning(f"No YAML files found under {root}")
        return cls(files=files)

    @classmethod
    def from_path(cls, path: str) -> "ManifestBundle":
        """Load from a file or a directory."""
        p = Path(path)
        if p.is_dir():
            return cls.from_dir(path)
        if not p.exists():
            raise ManifestLoadError(f"Manifest path not found: {p}", source=str(p))
        return cls.from_file(path)
