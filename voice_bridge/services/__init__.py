"""
Services module for external integrations.

- tool_dispatcher: ToolDispatcher, which forwards model function calls to the
  business backend with one authenticated HTTP POST each and turns every failure
  into an ``{"error": ...}`` result.

Usage examples:
```python
from voice_bridge.services.tool_dispatcher import ToolDispatcher

dispatcher = ToolDispatcher("https://backend.example.com/tools", token="secret")
result = await dispatcher.dispatch("check_availability", "acme", {"date": "2026-10-20"})
await dispatcher.aclose()
```
"""
