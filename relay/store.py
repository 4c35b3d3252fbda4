"""Subscription store and subscriber resolution.

Four containers, owned by one dispatcher:
  - exact map: name -> subscribers, newest first
  - pattern map: compiled pattern -> single subscriber (re-registering the
    same pattern replaces its subscriber)
  - namespace tree: nested nodes mirroring names; a leaf node references
    the exact map's list for that name (lookup only)
  - proxy table: source name -> Proxy(target, transform)

The exact map and the namespace tree always hold the same set of names.
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from relay.event import is_pattern, matches

Handler = Callable[..., Any]

_CONFIG_KEYS = {
    "default_params": "default_params",
    "defaultParams": "default_params",
    "schema": "schema",
}


@dataclass(frozen=True)
class SubscriberConfig:
    default_params: Optional[Mapping[str, Any]] = None
    schema: Any = None

    @classmethod
    def coerce(cls, config: Any) -> "SubscriberConfig":
        if config is None:
            return cls()
        if isinstance(config, cls):
            return config
        if isinstance(config, Mapping):
            unknown = [k for k in config if k not in _CONFIG_KEYS]
            if unknown:
                raise TypeError(f"Unknown subscriber config keys: {unknown}")
            return cls(**{_CONFIG_KEYS[k]: v for k, v in config.items()})
        raise TypeError(
            "Subscriber config must be a mapping "
            f"(got {type(config).__name__})"
        )


def accepts_callback(handler: Handler) -> bool:
    """True when the handler takes a second positional (completion) arg."""
    try:
        sig = inspect.signature(handler)
    except (TypeError, ValueError):
        return False
    positional = 0
    for p in sig.parameters.values():
        if p.kind is p.VAR_POSITIONAL:
            return True
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


@dataclass(frozen=True, eq=False)
class Subscriber:
    handler: Handler
    config: SubscriberConfig = field(default_factory=SubscriberConfig)
    wants_callback: bool = False

    @classmethod
    def create(cls, handler: Handler, config: Any = None) -> "Subscriber":
        return cls(
            handler=handler,
            config=SubscriberConfig.coerce(config),
            wants_callback=accepts_callback(handler),
        )


@dataclass(frozen=True)
class Proxy:
    target: str
    transform: Callable[[Any], Any]


class _Node:
    __slots__ = ("children", "subscribers")

    def __init__(self) -> None:
        self.children: Dict[str, _Node] = {}
        self.subscribers: Optional[List[Subscriber]] = None


class SubscriptionStore:
    def __init__(self, delimiter: str = ".") -> None:
        self.delimiter = delimiter
        self._exact: Dict[str, List[Subscriber]] = {}
        self._patterns: Dict[Any, Subscriber] = {}
        self._tree = _Node()
        self._proxies: Dict[str, Proxy] = {}

    # ------------------------------------------------------------------
    # registration
    def add(self, event: Any, subscriber: Subscriber) -> None:
        if is_pattern(event):
            self._patterns[event] = subscriber
            return
        subs = self._exact.get(event)
        if subs is None:
            subs = self._exact[event] = []
            self._mirror(event, subs)
        subs.insert(0, subscriber)

    def remove(self, event: Any, handler: Optional[Handler] = None) -> bool:
        """Remove a pattern, a whole name, or one handler of a name.

        Returns True when something was removed.
        """
        removed = False
        if is_pattern(event) and event in self._patterns:
            del self._patterns[event]
            removed = True
        if isinstance(event, str) and event in self._exact:
            if handler is None:
                del self._exact[event]
                self._unmirror(event)
                return True
            subs = self._exact[event]
            for i, sub in enumerate(subs):
                if sub.handler == handler:
                    del subs[i]
                    removed = True
                    break
        return removed

    # ------------------------------------------------------------------
    # resolution
    def resolve(self, name: str) -> List[Subscriber]:
        """Point-in-time list of subscribers for ``name``.

        Pattern matches come first, later-registered patterns in front; the
        exact list (already newest first) follows.
        """
        subscribers: List[Subscriber] = []
        for matcher, sub in self._patterns.items():
            if matches(matcher, name):
                subscribers.insert(0, sub)
        subscribers.extend(self._exact.get(name, ()))
        return subscribers

    # ------------------------------------------------------------------
    # proxies
    def set_proxy(self, source: str, proxy: Proxy) -> None:
        self._proxies[source] = proxy

    def get_proxy(self, name: str) -> Optional[Proxy]:
        return self._proxies.get(name)

    # ------------------------------------------------------------------
    # namespace tree
    def leaves(self, prefix: str) -> List[str]:
        node = self._tree
        for seg in prefix.split(self.delimiter):
            node = node.children.get(seg)
            if node is None:
                return []
        return [
            name
            for name, child in node.children.items()
            if child.subscribers is not None
        ]

    def _mirror(self, name: str, subs: List[Subscriber]) -> None:
        node = self._tree
        for seg in name.split(self.delimiter):
            node = node.children.setdefault(seg, _Node())
        node.subscribers = subs

    def _unmirror(self, name: str) -> None:
        path = [self._tree]
        segments = name.split(self.delimiter)
        for seg in segments:
            nxt = path[-1].children.get(seg)
            if nxt is None:
                return
            path.append(nxt)
        path[-1].subscribers = None
        # prune nodes left with neither a list nor children
        for i in range(len(segments), 0, -1):
            node = path[i]
            if node.subscribers is not None or node.children:
                break
            del path[i - 1].children[segments[i - 1]]

    # ------------------------------------------------------------------
    # introspection
    def names(self) -> List[str]:
        return list(self._exact)

    def patterns(self) -> List[Any]:
        return list(self._patterns)

    def tree_names(self) -> List[str]:
        out: List[str] = []

        def walk(node: _Node, prefix: List[str]) -> None:
            for seg, child in node.children.items():
                path = prefix + [seg]
                if child.subscribers is not None:
                    out.append(self.delimiter.join(path))
                walk(child, path)

        walk(self._tree, [])
        return out

    def __contains__(self, name: object) -> bool:
        return name in self._exact or name in self._patterns


__all__ = [
    "Handler",
    "SubscriberConfig",
    "Subscriber",
    "Proxy",
    "SubscriptionStore",
    "accepts_callback",
]
