"""Per-profile node records and the registry that owns them.

Profiles are persisted as YAML documents using ruamel.yaml so that hand
edits and comments survive rewrites.
"""

import fcntl
import shutil
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from nodectl.exceptions import AlreadyExistsError, NotFoundError, StoreError
from nodectl.logging_config import get_logger
from nodectl.models.cluster import ProvisionOptions, validate_profile_name
from nodectl.models.node import Node, NodeRole, NodeState

logger = get_logger(__name__)


def _yaml() -> YAML:
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.default_flow_style = False
    yaml.indent(mapping=2, sequence=2, offset=0)
    return yaml


class NodeStore:
    """Record of every node belonging to one profile.

    Nodes are kept in insertion order; the first node is the control plane.
    Deleted node names are retired and never handed out again.
    """

    def __init__(
        self,
        profile: str,
        options: ProvisionOptions | None = None,
        path: Path | None = None,
    ):
        """Initialize an empty store.

        Args:
            profile: Profile name
            options: Provisioning options inherited by every node
            path: File the store persists to, or None to keep it in memory
        """
        self.profile = validate_profile_name(profile)
        self.options = options or ProvisionOptions()
        self.path = Path(path) if path else None
        self._nodes: list[Node] = []
        self._retired: list[str] = []
        self._next_ordinal = 1

    @staticmethod
    def node_name(ordinal: int) -> str:
        """Return the node name for an ordinal, e.g. ``m03``."""
        return f"m{ordinal:02d}"

    @staticmethod
    def machine_name(profile: str, ordinal: int) -> str:
        """Return the machine name for a node.

        The control plane's machine is named after the profile; workers get
        the node name as a suffix.
        """
        if ordinal == 1:
            return profile
        return f"{profile}-{NodeStore.node_name(ordinal)}"

    @property
    def nodes(self) -> list[Node]:
        """Active nodes in creation order."""
        return list(self._nodes)

    @property
    def retired_names(self) -> list[str]:
        return list(self._retired)

    @property
    def active(self) -> bool:
        """Whether any node still has a machine behind it."""
        return any(n.state is not NodeState.ABSENT for n in self._nodes)

    @property
    def control_plane(self) -> Node | None:
        return next((n for n in self._nodes if n.is_control_plane), None)

    def allocate(self) -> Node:
        """Create and append the record for the next node."""
        ordinal = self._next_ordinal
        name = self.node_name(ordinal)
        if name in self._retired or self.find(name):
            raise AlreadyExistsError(
                f"Node name '{name}' is already in use in profile '{self.profile}'"
            )

        node = Node(
            name=name,
            machine_name=self.machine_name(self.profile, ordinal),
            ordinal=ordinal,
            role=NodeRole.CONTROL_PLANE if ordinal == 1 else NodeRole.WORKER,
        )
        self._nodes.append(node)
        self._next_ordinal += 1
        logger.debug(f"Allocated node '{name}' ({node.machine_name}) in profile '{self.profile}'")
        return node

    def find(self, name: str) -> Node | None:
        """Look up an active node by node name or machine name."""
        for node in self._nodes:
            if name in (node.name, node.machine_name):
                return node
        return None

    def get(self, name: str) -> Node:
        """Look up an active node.

        Raises:
            NotFoundError: If the node is unknown or has been deleted
        """
        node = self.find(name)
        if node is None:
            if self.is_retired(name):
                raise NotFoundError(
                    f"Node '{name}' was deleted from profile '{self.profile}'",
                    "Deleted node names are not reused. Use 'nodectl node add' to add a new node",
                )
            raise NotFoundError(
                f"Node '{name}' not found in profile '{self.profile}'",
                f"Known nodes: {', '.join(n.name for n in self._nodes) or 'none'}",
            )
        return node

    def is_retired(self, name: str) -> bool:
        if name in self._retired:
            return True
        prefix = f"{self.profile}-"
        return name.startswith(prefix) and name[len(prefix):] in self._retired

    def set_state(self, name: str, state: NodeState) -> Node:
        """Record a node's state and return the updated record."""
        node = self.get(name)
        updated = node.model_copy(update={"state": state})
        self._nodes[self._nodes.index(node)] = updated
        if node.state is not state:
            logger.debug(f"Node '{name}' state {node.state.value} -> {state.value}")
        return updated

    def retire(self, name: str) -> None:
        """Remove a node from the active sequence and retire its name."""
        node = self.get(name)
        self._nodes.remove(node)
        self._retired.append(node.name)
        logger.info(f"Retired node '{node.name}' from profile '{self.profile}'")

    def to_dict(self) -> dict:
        """Convert to the persisted profile format."""
        nodes = CommentedMap()
        for node in self._nodes:
            nodes[node.name] = node.to_store_dict()
        return {
            "profile": self.profile,
            "options": self.options.model_dump(),
            "next_ordinal": self._next_ordinal,
            "nodes": nodes,
            "retired": list(self._retired),
        }

    @classmethod
    def from_dict(cls, data: dict, path: Path | None = None) -> "NodeStore":
        """Parse from the persisted profile format."""
        store = cls(data["profile"], ProvisionOptions(**data.get("options", {})), path)
        store._nodes = [
            Node.from_store_dict(name, node_data)
            for name, node_data in (data.get("nodes") or {}).items()
        ]
        store._nodes.sort(key=lambda n: n.ordinal)
        store._retired = list(data.get("retired") or [])
        highest = max([n.ordinal for n in store._nodes], default=0)
        store._next_ordinal = max(data.get("next_ordinal", 1), highest + 1)
        return store

    def save(self) -> None:
        """Write the store to its file, keeping a backup of the previous version.

        Raises:
            StoreError: If the file cannot be written
        """
        if self.path is None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                shutil.copy2(self.path, self.path.with_suffix(".yml.backup"))
            with open(self.path, "w") as f:
                _yaml().dump(self.to_dict(), f)
            logger.debug(f"Saved profile '{self.profile}' to {self.path}")
        except PermissionError as e:
            raise StoreError(
                f"Permission denied writing profile: {self.path}",
                f"Check file permissions ({e})",
            )
        except OSError as e:
            raise StoreError(
                f"Failed to write profile: {e}", "Check disk space and file system permissions"
            )

    @classmethod
    def load(cls, path: Path) -> "NodeStore":
        """Read a store from its file.

        Raises:
            StoreError: If the file is missing, empty, or corrupted
        """
        path = Path(path)
        if not path.exists():
            raise StoreError(f"Profile file not found: {path}")

        try:
            with open(path) as f:
                data = _yaml().load(f)
        except Exception as e:
            raise StoreError(
                f"Failed to read profile file: {e}",
                f"The file may be corrupted or have invalid YAML syntax. Check {path.absolute()}",
            )

        if not data:
            raise StoreError(f"Profile file is empty: {path}")

        try:
            return cls.from_dict(data, path)
        except (KeyError, ValueError, ValidationError) as e:
            raise StoreError(f"Profile file {path} is invalid: {e}")


class StoreRegistry:
    """Process-wide registry of NodeStores keyed by profile.

    Each profile gets its own lock; mutating operations on one profile are
    serialized while different profiles proceed independently. When stores
    are persisted the lock also holds an advisory ``flock`` on
    ``<profile>.lock``, so registries in other processes sharing the same
    state directory are serialized too.
    """

    def __init__(self, state_dir: Path | None = None):
        """Initialize the registry.

        Args:
            state_dir: Directory holding one ``<profile>.yml`` per profile, or
                None to keep every store in memory
        """
        self.state_dir = Path(state_dir) if state_dir else None
        self._stores: dict[str, NodeStore] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def path_for(self, profile: str) -> Path | None:
        if self.state_dir is None:
            return None
        return self.state_dir / f"{profile}.yml"

    def lock_path_for(self, profile: str) -> Path | None:
        if self.state_dir is None:
            return None
        return self.state_dir / f"{profile}.lock"

    @contextmanager
    def lock(self, profile: str) -> Iterator[None]:
        """Hold exclusive write access to a profile.

        The cached store is dropped once the lock is held, so the next
        ``get`` reads whatever another process last saved.

        Raises:
            StoreError: If the lock file cannot be opened
        """
        with self._guard:
            mutex = self._locks.setdefault(profile, threading.Lock())

        with mutex:
            lock_path = self.lock_path_for(profile)
            if lock_path is None:
                yield
                return

            try:
                lock_path.parent.mkdir(parents=True, exist_ok=True)
                lock_file = open(lock_path, "a")
            except OSError as e:
                raise StoreError(f"Failed to open profile lock: {lock_path}", str(e))

            with lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    with self._guard:
                        self._stores.pop(profile, None)
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def exists(self, profile: str) -> bool:
        if profile in self._stores:
            return True
        path = self.path_for(profile)
        return path is not None and path.exists()

    def get(self, profile: str) -> NodeStore:
        """Return the store for a profile, loading it from disk if needed.

        Raises:
            NotFoundError: If the profile does not exist
        """
        with self._guard:
            store = self._stores.get(profile)
            if store is not None:
                return store

            path = self.path_for(profile)
            if path is None or not path.exists():
                raise NotFoundError(
                    f"Profile '{profile}' not found",
                    f"Create it with: nodectl start -p {profile}",
                )
            store = NodeStore.load(path)
            self._stores[profile] = store
            return store

    def create(self, profile: str, options: ProvisionOptions | None = None) -> NodeStore:
        """Create a fresh store for a profile.

        A profile whose nodes are all gone may be recreated.

        Raises:
            AlreadyExistsError: If the profile is active
        """
        existing = None
        if self.exists(profile):
            existing = self.get(profile)
        if existing is not None and existing.active:
            raise AlreadyExistsError(
                f"Profile '{profile}' already exists with {len(existing.nodes)} node(s)",
                f"Use 'nodectl node add -p {profile}' to grow it, "
                f"or 'nodectl delete -p {profile}' to remove it first",
            )

        store = NodeStore(profile, options, self.path_for(profile))
        with self._guard:
            self._stores[profile] = store
        store.save()
        logger.info(f"Created profile '{profile}'")
        return store

    def remove(self, profile: str) -> None:
        """Forget a profile and delete its persisted file."""
        with self._guard:
            self._stores.pop(profile, None)
        path = self.path_for(profile)
        if path is not None:
            for p in (path, path.with_suffix(".yml.backup")):
                if p.exists():
                    p.unlink()
        logger.info(f"Removed profile '{profile}'")

    def profiles(self) -> list[str]:
        """Return every known profile name, sorted."""
        names = set(self._stores)
        if self.state_dir is not None and self.state_dir.exists():
            names.update(p.stem for p in self.state_dir.glob("*.yml"))
        return sorted(names)
