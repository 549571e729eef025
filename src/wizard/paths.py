"""
Redirect Paths

Turns a Redirect into a URL path. Step ids stay opaque to the engine; only
this module knows how they map onto routes.
"""

from typing import Optional, Protocol

from wizard.results import Redirect


class PathResolver(Protocol):
    def path_for(self, redirect: Redirect, submission_id: str, context: Optional[str] = None) -> str:
        """``context`` is used when the redirect carries no flow key."""
        ...


class DefaultPathResolver:
    """
    Default route layout.

    - flow step:   {prefix}/{context}/{id}/{flow-slug}/{step}
    - shared step: {prefix}/{context}/{id}/{step}
    - child step:  {prefix}/{context}/{id}/{flow-slug}/children/{child_id}/{step}
    """

    def __init__(self, prefix: str = "/en"):
        self.prefix = prefix.rstrip("/")

    def path_for(self, redirect: Redirect, submission_id: str, context: Optional[str] = None) -> str:
        if redirect.flow_key is not None:
            context = redirect.flow_key.context.value
        if context is None:
            raise ValueError(f"Cannot build a path for '{redirect.step_id}' without a context")

        base = f"{self.prefix}/{context}/{submission_id}"
        if redirect.flow_key is None or (redirect.shared and not redirect.child_id):
            return f"{base}/{redirect.step_id}"
        slug = redirect.flow_key.slug
        if redirect.child_id:
            return f"{base}/{slug}/children/{redirect.child_id}/{redirect.step_id}"
        return f"{base}/{slug}/{redirect.step_id}"
