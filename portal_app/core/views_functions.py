"""JSON dispatch endpoint for ``/api/functions/<name>``.

Authentication and session handling happen in front of this view; it only
translates HTTP to commands and results back to HTTP.
"""

import json
import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from core.exceptions import PortalError, ValidationError
from core.operations import execute, operation_for_name, parse_command

logger = logging.getLogger(__name__)

_GENERIC_FAILURE = "Function execution failed. Please try again later."


def _error_payload(exc: PortalError) -> dict[str, object]:
    return {"success": False, "error": exc.message, "code": exc.code}


def _parse_body(request: HttpRequest) -> dict[str, object]:
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Request body must be valid JSON.") from None
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


@csrf_exempt
def function_dispatch(request: HttpRequest, function_name: str) -> JsonResponse:
    if request.method != "POST":
        return JsonResponse({"error": "Method not allowed"}, status=405)

    operation = operation_for_name(function_name)
    if operation is None:
        logger.info(
            "portal.functions.unknown function=%s",
            function_name,
            extra={"event": "portal.functions.unknown", "component": "functions", "function": function_name},
        )
        return JsonResponse(
            {"success": False, "error": f"Function '{function_name}' is not implemented", "code": "unknown_operation"}
        )

    try:
        command = parse_command(operation, _parse_body(request))
        result = execute(command)
    except PortalError as exc:
        logger.info(
            "portal.functions.rejected function=%s code=%s",
            operation,
            exc.code,
            extra={
                "event": "portal.functions.rejected",
                "component": "functions",
                "function": str(operation),
                "code": exc.code,
                "outcome": "rejected",
            },
        )
        return JsonResponse(_error_payload(exc))
    except Exception:
        logger.exception(
            "portal.functions.failed function=%s",
            operation,
            extra={"event": "portal.functions.failed", "component": "functions", "function": str(operation)},
        )
        return JsonResponse({"error": _GENERIC_FAILURE}, status=500)

    return JsonResponse(result)
