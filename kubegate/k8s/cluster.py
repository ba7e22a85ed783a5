"""Cluster state snapshot.

ClusterState stands in for the API server during planning: an in-memory
store of live objects keyed by identity, loaded from and saved to a snapshot
file (multi-document YAML, a ``kind: List`` document, or the same in JSON).
Applying a plan updates the store and assigns the server-managed metadata a
real API server would (uid, resourceVersion, generation, creationTimestamp).
"""

import copy
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from kubegate.core.errors import ManifestLoadError, SnapshotError
from kubegate.k8s.artifact import (
    KindRegistry,
    ObjectRef,
    dump_yaml_documents,
    is_list_document,
    load_yaml_documents,
    ref_for,
    to_plain,
)
from kubegate.k8s.constants import DEFAULT_NAMESPACE

logger = logging.getLogger(__name__)

# Namespaces every cluster starts with
BUILTIN_NAMESPACES = ("default", "kube-system", "kube-public", "kube-node-lease")

ObjectKey = Tuple[str, str, str, str]


class ClusterState:
    """In-memory store of live cluster objects.

    Example:
        >>> cluster = ClusterState.from_file("snapshot.yaml")
        >>> cluster.get(ObjectRef("apps/v1", "Deployment", "web", "frontend"))
    """

    def __init__(self, default_namespace: str = DEFAULT_NAMESPACE, path: Optional[str] = None):
        """Initialize an empty ClusterState.

        Args:
            default_namespace: Namespace for namespaced objects that omit one
            path: Snapshot file used by save() when no path is given
        """
        self.default_namespace = default_namespace
        self.path = path
        self.objects: Dict[ObjectKey, dict] = {}
        self.registry = KindRegistry()
        self._resource_version = 0

    @classmethod
    def from_file(cls, path: str, default_namespace: str = DEFAULT_NAMESPACE) -> "ClusterState":
        """Load a snapshot; a missing file gives an empty cluster.

        Raises:
            SnapshotError: If the file exists but cannot be parsed
        """
        state = cls(default_namespace=default_namespace, path=path)
        snapshot = Path(path)
        if not snapshot.exists():
            logger.info(f"Snapshot {path} not found, starting from an empty cluster")
            return state

        try:
            documents = load_yaml_documents(snapshot.read_text(encoding="utf-8"), source=path)
        except (OSError, ManifestLoadError) as e:
            raise SnapshotError(f"Cannot load snapshot {path}: {e}", path=path) from e

        bodies: List[dict] = []
        for doc in documents:
            if doc is None:
                continue
            if not isinstance(doc, dict):
                raise SnapshotError(f"Snapshot {path} contains a non-mapping document", path=path)
            doc = to_plain(doc)
            if is_list_document(doc):
                bodies.extend(item for item in doc.get("items") or [] if isinstance(item, dict))
            else:
                bodies.append(doc)
        state.load_bodies(bodies)
        logger.info(f"Loaded {len(state.objects)} objects from snapshot {path}")
        return state

    def load_bodies(self, bodies: Iterable[dict]) -> None:
        """Insert objects exactly as given (no metadata is generated)."""
        bodies = list(bodies)
        self.registry.register_from(bodies)
        for body in bodies:
            ref = self.ref(body)
            self.objects[ref.key()] = copy.deepcopy(body)
            rv = str((body.get("metadata") or {}).get("resourceVersion") or "")
            if rv.isdigit():
                self._resource_version = max(self._resource_version, int(rv))

    def save(self, path: Optional[str] = None) -> None:
        """Write the snapshot as a v1 List (JSON when the path ends in .json)."""
        target = path or self.path
        if not target:
            raise SnapshotError("No snapshot path to save to")
        document = {"apiVersion": "v1", "kind": "List", "items": self.bodies()}
        if str(target).endswith(".json"):
            text = json.dumps(document, indent=2, sort_keys=True) + "\n"
        else:
            text = dump_yaml_documents([document])
        try:
            Path(target).write_text(text, encoding="utf-8")
        except OSError as e:
            raise SnapshotError(f"Cannot write snapshot {target}: {e}", path=str(target)) from e
        logger.info(f"Saved {len(self.objects)} objects to snapshot {target}")

    def ref(self, body: dict) -> ObjectRef:
        return ref_for(body, self.default_namespace, self.registry)

    def get(self, ref: ObjectRef) -> Optional[dict]:
        return self.objects.get(ref.key())

    def bodies(self) -> List[dict]:
        return [self.objects[key] for key in sorted(self.objects)]

    def list(self, kind: Optional[str] = None, namespace: Optional[str] = None) -> List[dict]:
        result = []
        for (group, obj_kind, obj_ns, name), body in sorted(self.objects.items()):
            if kind is not None and obj_kind != kind:
                continue
            if namespace is not None and obj_ns != namespace:
                continue
            result.append(body)
        return result

    def namespaces(self) -> set:
        names = set(BUILTIN_NAMESPACES)
        names.update(
            str((body.get("metadata") or {}).get("name"))
            for body in self.list(kind="Namespace")
        )
        return names

    def put(self, body: dict) -> dict:
        """Create or replace an object, assigning server-managed metadata.

        generation starts at 1 and is bumped only when spec changes.

        Returns:
            The stored object
        """
        stored = copy.deepcopy(body)
        if stored.get("kind") == "CustomResourceDefinition":
            self.registry.register_crd(stored)
        ref = self.ref(stored)
        existing = self.objects.get(ref.key())
        metadata = stored.setdefault("metadata", {})
        if ref.namespace:
            metadata["namespace"] = ref.namespace

        self._resource_version += 1
        metadata["resourceVersion"] = str(self._resource_version)
        if existing is None:
            metadata["uid"] = str(uuid.uuid4())
            metadata["generation"] = 1
            metadata["creationTimestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        else:
            old_meta = existing.get("metadata") or {}
            metadata["uid"] = old_meta.get("uid") or str(uuid.uuid4())
            metadata["creationTimestamp"] = old_meta.get("creationTimestamp")
            generation = old_meta.get("generation", 1)
            if existing.get("spec") != stored.get("spec"):
                generation += 1
            metadata["generation"] = generation
            if "status" in existing and "status" not in stored:
                stored["status"] = existing["status"]

        self.objects[ref.key()] = stored
        return stored

    def delete(self, ref: ObjectRef) -> Optional[dict]:
        """Remove an object; deleting a Namespace removes everything inside it."""
        removed = self.objects.pop(ref.key(), None)
        if removed is not None and ref.kind == "Namespace":
            for key in [k for k in self.objects if k[2] == ref.name]:
                del self.objects[key]
        return removed

    def __len__(self) -> int:
        return len(self.objects)

    def __contains__(self, ref: Any) -> bool:
        return isinstance(ref, ObjectRef) and ref.key() in self.objects
