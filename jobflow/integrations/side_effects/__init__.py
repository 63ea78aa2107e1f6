from jobflow.integrations.side_effects.base import SideEffect, SideEffectDispatcher
from jobflow.integrations.side_effects.factory import build_dispatcher

__all__ = ["SideEffect", "SideEffectDispatcher", "build_dispatcher"]
