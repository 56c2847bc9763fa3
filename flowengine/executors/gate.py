"""Gate node executor."""

import operator
from numbers import Number
from typing import Any, Dict

from ..core.exceptions import MissingFieldError, NodeExecutionError, ReferenceResolutionError
from ..core.variable_resolver import VARIABLE_KEY, resolve_variable_path
from ..models.core import ErrorKind, GateNodeConfig, HaltReason, NodeExecutionResult, WorkflowNode
from .base import NodeExecutor, RunContext, error_details, failure_result, success_result


def values_equal(left: Any, right: Any) -> bool:
    """Equality without coercion: ``"5"`` never equals ``5`` and ``True`` never equals ``1``."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, Number) and isinstance(right, Number):
        return left == right
    return type(left) is type(right) and left == right


OPERATORS = {
    "equals": values_equal,
    "not_equals": lambda left, right: operator.not_(values_equal(left, right)),
}


class GateExecutor(NodeExecutor):
    """Compares a value from an earlier node against an expected value.

    A condition that does not hold is reported as a failed result with
    ``halt_reason`` set to ``gate_blocked``.
    """

    async def execute(
        self,
        node: WorkflowNode,
        resolved_input: Dict[str, Any],
        context: RunContext,
    ) -> NodeExecutionResult:
        try:
            config = node.typed_config()
            condition = config.condition if isinstance(config, GateNodeConfig) else None
            if condition is None:
                raise MissingFieldError("Gate node requires condition configuration", field="condition", node_id=node.id)
            if not condition.field or not condition.operator or not condition.has_value:
                raise MissingFieldError(
                    "Gate node requires field, operator, and value in condition",
                    field="condition",
                    node_id=node.id,
                )

            field_path = condition.field
            if isinstance(field_path, dict):
                field_path = field_path.get(VARIABLE_KEY)
            if not isinstance(field_path, str) or not field_path:
                raise MissingFieldError("Invalid field configuration in gate node", field="condition.field", node_id=node.id)

            compare = OPERATORS.get(condition.operator)
            if compare is None:
                raise NodeExecutionError(f"Unsupported gate operator: {condition.operator}", node_id=node.id)

            field_value = resolve_variable_path(field_path, context.previous_results)
        except MissingFieldError as e:
            return failure_result(node, resolved_input, ErrorKind.MISSING_FIELD, e.message, details=error_details(e))
        except ReferenceResolutionError as e:
            return failure_result(node, resolved_input, ErrorKind.REFERENCE_ERROR, e.message, details=error_details(e))
        except NodeExecutionError as e:
            return failure_result(node, resolved_input, ErrorKind.NODE_EXECUTION_ERROR, e.message, details=error_details(e))

        expected_value = condition.value
        condition_met = compare(field_value, expected_value)
        gate_input = {
            "fieldValue": field_value,
            "expectedValue": expected_value,
            "operator": condition.operator,
        }
        output = {"conditionMet": condition_met, **gate_input}

        if condition_met:
            return success_result(node, gate_input, output)

        symbol = "!==" if condition.operator == "equals" else "==="
        return failure_result(
            node,
            gate_input,
            ErrorKind.GATE_CONDITION_FAILED,
            f"Gate condition not met: {field_value} {symbol} {expected_value}",
            output=output,
            halt_reason=HaltReason.GATE_BLOCKED,
        )
