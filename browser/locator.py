"""Target acquisition across documents, shadow roots and frames.

The host page owns the widget DOM and may rebuild it at any time, so
nothing here is cached: every interaction attempt re-runs
:meth:`TargetLocator.find` and gets a fresh :class:`InteractionTarget`.

Search order (first rendered match wins):
    1. The root itself, each selector in priority order.
    2. Every shadow root reachable from the root, depth-first, each
       checked against the full selector list before descending.
    3. Every reachable nested frame document, repeating 1 and 2.

Frames whose content cannot be read are skipped without error; that is
the normal outcome for cross-origin frames, not a failure.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from browser import scripts

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAME_DEPTH = 4


class SearchableNode(Protocol):
    """A document-like root that can be queried for elements.

    Concrete providers: a frame's document, a shadow root, and a nested
    frame's document.  ``frame_documents`` yields ``None`` for frames
    that are present but unreadable.
    """

    label: str

    async def query_all(self, selector: str) -> List[Any]:
        ...

    async def is_rendered(self, element: Any) -> bool:
        ...

    async def shadow_roots(self) -> List["SearchableNode"]:
        ...

    async def frame_documents(self) -> List[Optional["SearchableNode"]]:
        ...


@dataclass
class InteractionTarget:
    """Ephemeral handle to a located control.

    Attributes:
        root: Node the search started from.
        path: Labels of the shadow-root/frame hops leading to ``owner``.
        element: The element handle itself.
        owner: Node whose query returned ``element``.
        selector: Selector that matched.
    """

    root: SearchableNode
    path: Tuple[str, ...]
    element: Any
    owner: SearchableNode
    selector: str

    @property
    def description(self) -> str:
        hops = " > ".join(self.path) if self.path else "root"
        return f"{self.selector} @ {hops}"


class PlaywrightNode:
    """:class:`SearchableNode` backed by a Playwright JSHandle.

    The handle points at a ``Document`` or ``ShadowRoot``; queries are
    evaluated in-page so that light DOM, shadow DOM and nested frames
    stay distinct search tiers.
    """

    def __init__(self, handle: Any, label: str, frame: Any = None) -> None:
        self.handle = handle
        self.label = label
        self.frame = frame

    @classmethod
    async def for_frame(cls, frame: Any, label: Optional[str] = None) -> "PlaywrightNode":
        """Wrap the document of a Playwright ``Frame``."""
        handle = await frame.evaluate_handle("() => document")
        return cls(handle, label or f"frame:{frame.url}", frame=frame)

    async def _elements(self, array_handle: Any) -> List[Any]:
        properties = await array_handle.get_properties()
        elements = []
        for prop in properties.values():
            element = prop.as_element()
            if element is not None:
                elements.append(element)
        return elements

    async def query_all(self, selector: str) -> List[Any]:
        array_handle = await self.handle.evaluate_handle(scripts.QUERY_ALL, selector)
        return await self._elements(array_handle)

    async def is_rendered(self, element: Any) -> bool:
        return bool(await element.evaluate(scripts.IS_RENDERED))

    async def shadow_roots(self) -> List["PlaywrightNode"]:
        array_handle = await self.handle.evaluate_handle(scripts.SHADOW_ROOTS)
        properties = await array_handle.get_properties()
        return [
            PlaywrightNode(prop, f"shadow[{index}]", frame=self.frame)
            for index, prop in enumerate(properties.values())
        ]

    async def frame_documents(self) -> List[Optional["PlaywrightNode"]]:
        array_handle = await self.handle.evaluate_handle(scripts.FRAME_ELEMENTS)
        documents: List[Optional[PlaywrightNode]] = []
        for element in await self._elements(array_handle):
            try:
                child = await element.content_frame()
                if child is None or child.is_detached():
                    documents.append(None)
                    continue
                documents.append(await PlaywrightNode.for_frame(child))
            except Exception as e:
                logger.debug("Skipping unreadable frame: %s", e)
                documents.append(None)
        return documents


@dataclass
class TargetLocator:
    """Find the first rendered element matching a prioritised selector list.

    Pure with respect to its inputs: no state survives between calls.

    Attributes:
        max_frame_depth: How many nested frame levels to descend.
    """

    max_frame_depth: int = DEFAULT_MAX_FRAME_DEPTH

    async def find(
        self,
        root: SearchableNode,
        selectors: Sequence[str],
    ) -> Optional[InteractionTarget]:
        """Search *root* for a control.

        Returns:
            The first match, or ``None`` when nothing was found (the
            caller falls back to blind interaction).
        """
        if not selectors:
            return None
        return await self._search_document(root, root, tuple(selectors), (), 0)

    async def _search_document(
        self,
        root: SearchableNode,
        node: SearchableNode,
        selectors: Tuple[str, ...],
        path: Tuple[str, ...],
        frame_depth: int,
    ) -> Optional[InteractionTarget]:
        target = await self._match(root, node, selectors, path)
        if target:
            return target

        target = await self._search_shadow(root, node, selectors, path)
        if target:
            return target

        if frame_depth >= self.max_frame_depth:
            return None
        try:
            documents = await node.frame_documents()
        except Exception as e:
            logger.debug("Frame enumeration failed in %s: %s", node.label, e)
            return None
        for document in documents:
            if document is None:
                continue
            target = await self._search_document(
                root, document, selectors, path + (document.label,), frame_depth + 1,
            )
            if target:
                return target
        return None

    async def _search_shadow(
        self,
        root: SearchableNode,
        node: SearchableNode,
        selectors: Tuple[str, ...],
        path: Tuple[str, ...],
    ) -> Optional[InteractionTarget]:
        try:
            shadow_roots = await node.shadow_roots()
        except Exception as e:
            logger.debug("Shadow enumeration failed in %s: %s", node.label, e)
            return None
        for shadow in shadow_roots:
            shadow_path = path + (shadow.label,)
            target = await self._match(root, shadow, selectors, shadow_path)
            if target:
                return target
            target = await self._search_shadow(root, shadow, selectors, shadow_path)
            if target:
                return target
        return None

    async def _match(
        self,
        root: SearchableNode,
        node: SearchableNode,
        selectors: Tuple[str, ...],
        path: Tuple[str, ...],
    ) -> Optional[InteractionTarget]:
        for selector in selectors:
            try:
                elements = await node.query_all(selector)
            except Exception as e:
                logger.debug("Query %r failed in %s: %s", selector, node.label, e)
                continue
            for element in elements:
                try:
                    rendered = await node.is_rendered(element)
                except Exception:
                    rendered = False
                if rendered:
                    return InteractionTarget(
                        root=root, path=path, element=element,
                        owner=node, selector=selector,
                    )
        return None
