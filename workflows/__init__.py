"""
Per-actor Workflow Engine

This module provides:
- A registry of workflow slots keyed by actor and workflow kind
- Step dispatch by button kind tag, command table or slot priority
- Lazy and periodic eviction of idle slots
- Handlers for registration, usage, recharge, invite codes, low-balance search
  and history browsing
"""

from .dispatcher import StepDispatcher
from .engine import Engine, build_engine
from .events import Action, ActorEvent, Button, EventKind, Reply
from .messaging import InMemoryMessenger, Messenger
from .reaper import IdleReaper
from .registry import WorkflowRegistry
from .slots import PRIORITY, Step, WorkflowKind, WorkflowSlot

__all__ = [
    "Action",
    "ActorEvent",
    "Button",
    "Engine",
    "EventKind",
    "IdleReaper",
    "InMemoryMessenger",
    "Messenger",
    "PRIORITY",
    "Reply",
    "Step",
    "StepDispatcher",
    "WorkflowKind",
    "WorkflowRegistry",
    "WorkflowSlot",
    "build_engine",
]
