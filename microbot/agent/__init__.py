"""
Agent System
============

The agent is the brain of the bot. It:
1. Receives inbound messages from a transport
2. Assembles context (identity, memory, skills, conversation)
3. Runs the model <-> skill loop
4. Persists the turn and delivers the reply

This module provides:
- Agent: Main orchestrator for processing messages
- ContextAssembler: Builds context for the model
- OrchestrationLoop: Drives the tool-call loop
- ToolCallParser: Extracts skill calls from model output
- SkillDispatcher: Runs skills with a timeout
"""

from microbot.agent.core import Agent, ReplySink
from microbot.agent.context import Context, ContextAssembler
from microbot.agent.dispatcher import SkillDispatcher
from microbot.agent.inbound import InboundMessage
from microbot.agent.loop import LoopResult, OrchestrationLoop
from microbot.agent.parser import ToolCall, ToolCallParser, parse_tool_calls

__all__ = [
    "Agent",
    "ReplySink",
    "Context",
    "ContextAssembler",
    "SkillDispatcher",
    "InboundMessage",
    "LoopResult",
    "OrchestrationLoop",
    "ToolCall",
    "ToolCallParser",
    "parse_tool_calls",
]
