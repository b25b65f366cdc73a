"""
Microbot - Skill-Driven Chat Agent
==================================

A small conversational agent that sits between chat transports and a
language model. Replies can call "skills" (tools described in Markdown
files) by emitting a tagged or templated JSON call; the agent runs the
skill and feeds the result back to the model until it answers in plain
text.

This package provides:
- Agent orchestration and the tool-call loop
- Per-conversation sessions persisted as JSON
- A skill catalog loaded from SKILL.md files
- Ollama and OpenAI-compatible model backends
- WebSocket and Slack transports
"""

__version__ = "1.0.0"
