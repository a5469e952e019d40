import uuid
import hashlib
import inspect
import logging
import importlib
from enum import Enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Union
from easytask.errors import AccessDenied, InvalidArgument, NotFound

log = logging.getLogger(__name__)


class TaskKind(Enum):
    FUNCTION = "function"
    STATIC_METHOD = "static_method"
    INSTANCE_METHOD = "instance_method"


#* --- Invocation variants ---
class FunctionCall:
    """Invokes a plain callable."""

    def __init__(self, func: Callable[[], Any]) -> None:
        self.func = func

    def __call__(self) -> Any:
        return self.func()

    def __repr__(self) -> str:
        return f"FunctionCall({getattr(self.func, '__qualname__', self.func)!r})"


class StaticMethodCall:
    """Invokes a static or class method, already bound at registration."""

    def __init__(self, cls: type, method_name: str) -> None:
        self.cls = cls
        self.method_name = method_name
        self.func = getattr(cls, method_name)

    def __call__(self) -> Any:
        return self.func()

    def __repr__(self) -> str:
        return f"StaticMethodCall({self.cls.__qualname__}.{self.method_name})"


class InstanceMethodCall:
    """
    Builds a fresh instance on every call and runs the method on it.
    A failing constructor fails that invocation only.
    """

    def __init__(self, cls: type, method_name: str) -> None:
        self.cls = cls
        self.method_name = method_name
        self.func = getattr(cls, method_name)

    def __call__(self) -> Any:
        instance = self.cls()
        return self.func(instance)

    def __repr__(self) -> str:
        return f"InstanceMethodCall({self.cls.__qualname__}.{self.method_name})"


Invocation = Union[FunctionCall, StaticMethodCall, InstanceMethodCall]


@dataclass(frozen=True)
class TaskDescriptor:
    """One registered unit of work."""
    key: str
    alias: str
    kind: TaskKind
    target: Invocation
    interval: float
    replicas: int
    ordinal: int = 0


def alias_key(alias: str) -> str:
    """Returns the stable registry key for an alias."""
    return hashlib.md5(alias.encode("utf-8")).hexdigest()


def _validate_schedule(interval: Any, replicas: Any) -> None:
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval < 1:
        raise InvalidArgument(f"interval must be a number >= 1, got {interval!r}")
    if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 1:
        raise InvalidArgument(f"replicas must be an integer >= 1, got {replicas!r}")


def _resolve_class(class_ref: Union[type, str]) -> type:
    """
    Resolves a class object or an import string ("pkg.mod:Class" or "pkg.mod.Class").

    :raises NotFound: If the module or class cannot be found.
    """
    if inspect.isclass(class_ref):
        return class_ref
    if not isinstance(class_ref, str) or not class_ref:
        raise NotFound(f"class {class_ref!r} is not exist")

    if ":" in class_ref:
        module_name, _, class_name = class_ref.partition(":")
    else:
        module_name, _, class_name = class_ref.rpartition(".")

    try:
        module = importlib.import_module(module_name)
        cls = getattr(module, class_name)
    except (ImportError, AttributeError, ValueError) as e:
        raise NotFound(f"class {class_ref} is not exist: {e}") from e

    if not inspect.isclass(cls):
        raise NotFound(f"{class_ref} is not a class")
    return cls


class TaskRegistry:
    """
    Holds the registered task descriptors, keyed by the md5 of their alias.
    Registration is pure bookkeeping; nothing runs until the registry is started.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, TaskDescriptor] = {}
        self._frozen = False

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[TaskDescriptor]:
        return iter(list(self._tasks.values()))

    def __contains__(self, key: str) -> bool:
        return key in self._tasks

    def freeze(self) -> None:
        """Marks the registry read-only; called when start begins."""
        self._frozen = True

    def _store(self, descriptor_args: Dict[str, Any], alias: str) -> None:
        if self._frozen:
            raise InvalidArgument("cannot register tasks after start")

        alias = alias or uuid.uuid4().hex
        key = alias_key(alias)
        previous = self._tasks.get(key)
        ordinal = previous.ordinal if previous else len(self._tasks)
        if previous:
            log.debug(f"Task alias '{alias}' registered again, replacing previous descriptor.")

        self._tasks[key] = TaskDescriptor(key=key, alias=alias, ordinal=ordinal, **descriptor_args)

    def register_function(self, target: Callable[[], Any], alias: str = "",
                          interval: float = 1, replicas: int = 1) -> "TaskRegistry":
        """
        Registers a callable as a task.

        :raises InvalidArgument: If target is not callable or the schedule is invalid.
        """
        if not callable(target):
            raise InvalidArgument("func must be callable")
        _validate_schedule(interval, replicas)

        self._store({
            "kind": TaskKind.FUNCTION,
            "target": FunctionCall(target),
            "interval": interval,
            "replicas": replicas,
        }, alias)
        return self

    def register_method(self, class_ref: Union[type, str], method_name: str, alias: str = "",
                        interval: float = 1, replicas: int = 1) -> "TaskRegistry":
        """
        Registers a class method as a task. Static and class methods are called
        on the class; any other method is called on a new instance per invocation.

        :raises NotFound: If the class or method does not exist.
        :raises AccessDenied: If the method is not public.
        """
        cls = _resolve_class(class_ref)
        name = cls.__qualname__

        try:
            attr = inspect.getattr_static(cls, method_name)
        except AttributeError:
            raise NotFound(f"class {name}'s func {method_name} is not exist") from None

        if method_name.startswith("_"):
            raise AccessDenied(f"class {name}'s func {method_name} must public")

        if isinstance(attr, (staticmethod, classmethod)):
            kind, target = TaskKind.STATIC_METHOD, StaticMethodCall(cls, method_name)
        elif callable(attr):
            kind, target = TaskKind.INSTANCE_METHOD, InstanceMethodCall(cls, method_name)
        else:
            raise NotFound(f"class {name}'s attribute {method_name} is not a method")

        _validate_schedule(interval, replicas)
        self._store({"kind": kind, "target": target, "interval": interval, "replicas": replicas}, alias)
        return self

    def get(self, key: str) -> Optional[TaskDescriptor]:
        return self._tasks.get(key)

    def find(self, key: str, ordinal: Optional[int] = None) -> Optional[TaskDescriptor]:
        """
        Looks a task up by key, then by registration position.
        Auto-generated aliases differ between program runs, so a re-invoked
        worker can only find those tasks by position.
        """
        descriptor = self._tasks.get(key)
        if descriptor or ordinal is None:
            return descriptor
        for candidate in self._tasks.values():
            if candidate.ordinal == ordinal:
                log.debug(f"Task key {key} not found, matched '{candidate.alias}' by position {ordinal}.")
                return candidate
        return None

    def total_workers(self) -> int:
        return sum(d.replicas for d in self._tasks.values())
