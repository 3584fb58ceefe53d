"""
Tool router for extraction-time tool calls.

Exposes the read-only event lookup to the extraction capability as
get_logged_events(startTime, endTime). Tool failures are returned to the
capability as unsuccessful results rather than raised.
"""

import json
from datetime import datetime, tzinfo
from typing import Dict, List, Any, Optional

from ..core.dao import EventLookupGateway
from ..core.errors import InvalidRangeError
from ..core.schema import TimeSpan, parse_instant
from ..util.logging import logger


class ToolRouter:
    """
    Registry and dispatcher for the tools an extractor may call.
    """

    def __init__(self, gateway: Optional[EventLookupGateway] = None):
        self.gateway = gateway or EventLookupGateway()
        self.tools = {}
        self._register_tools()

    def _register_tools(self):
        """Register all available tools."""
        self.tools = {
            "get_logged_events": {
                "function": self._get_logged_events,
                "description": "Retrieves a list of previously logged events within a specified time range.",
                "parameters": {
                    "startTime": {"type": "string", "required": True,
                                  "description": "The start of the time range in ISO 8601 format."},
                    "endTime": {"type": "string", "required": True,
                                "description": "The end of the time range in ISO 8601 format."},
                },
            },
        }

    def tool_specs(self) -> List[Dict[str, Any]]:
        """Function-calling definitions in the JSON schema form chat models expect."""
        specs = []
        for name, config in self.tools.items():
            params = config["parameters"]
            specs.append({
                "type": "function",
                "function": {
                    "name": name,
                    "description": config["description"],
                    "parameters": {
                        "type": "object",
                        "properties": {
                            k: {"type": v["type"], "description": v["description"]}
                            for k, v in params.items()
                        },
                        "required": [k for k, v in params.items() if v.get("required")],
                    },
                },
            })
        return specs

    async def call_tool(self, name: str, parameters: Dict[str, Any],
                        default_tz: Optional[tzinfo] = None) -> Dict[str, Any]:
        """
        Execute a tool with the given parameters.

        default_tz is applied to timestamps the caller sent without an offset.

        Returns:
            {"tool", "data", "success", "data_count"} plus "error" on failure
        """
        if name not in self.tools:
            result = {"tool": name, "data": [], "success": False, "data_count": 0,
                      "error": f"Unknown tool: {name}"}
            logger.log_tool_call(name, parameters, False, error=result["error"])
            return result

        tool_config = self.tools[name]

        try:
            validated_params = self._validate_parameters(name, parameters or {})

            start_time = datetime.now()
            result_data = await tool_config["function"](default_tz=default_tz, **validated_params)
            execution_time = (datetime.now() - start_time).total_seconds()

            result = {
                "tool": name,
                "data": result_data,
                "success": True,
                "execution_time": execution_time,
                "data_count": len(result_data),
            }
        except (ValueError, InvalidRangeError) as e:
            result = {"tool": name, "data": [], "success": False, "data_count": 0, "error": str(e)}

        logger.log_tool_call(name, parameters, result["success"], result["data_count"], result.get("error"))
        return result

    def _validate_parameters(self, tool_name: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and prepare tool parameters."""
        param_specs = self.tools[tool_name]["parameters"]

        validated = {}
        for param_name, spec in param_specs.items():
            if spec.get("required", False) and param_name not in parameters:
                raise ValueError(f"Required parameter '{param_name}' missing for tool '{tool_name}'")
            if param_name in parameters:
                validated[param_name] = parameters[param_name]

        return validated

    @staticmethod
    def format_for_model(result: Dict[str, Any]) -> str:
        """Tool result as the JSON text handed back to the extractor."""
        if result.get("success"):
            return json.dumps({"events": result["data"]})
        return json.dumps({"events": [], "error": result.get("error", "tool failed")})

    # Tool implementations

    async def _get_logged_events(self, startTime: str, endTime: str,
                                 default_tz: Optional[tzinfo] = None) -> List[Dict[str, Any]]:
        """Look up logged events whose start lies in the range."""
        span = TimeSpan(parse_instant(startTime, default_tz), parse_instant(endTime, default_tz))
        return [event.to_tool_dict() for event in self.gateway.lookup(span)]
