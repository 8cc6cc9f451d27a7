"""
Process Internal Node Service
Evaluates condition predicates and delay durations for the graph walker.
"""
from typing import Dict, Optional
from utils.log_utils import LogUtil

# Models
from models.contact_data import ContactData
from models.flow_data import Predicate, DelayConfig


UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}


class ProcessInternalNodeService:
    """
    Service for the internal node kinds that emit nothing to the channel (condition, delay)
    """

    def __init__(self, log_util: LogUtil):
        self.log_util = log_util

    def _actual_value(
        self,
        predicate: Predicate,
        bindings: Dict[str, str],
        contact: Optional[ContactData]
    ) -> Optional[str]:
        if predicate.source == "tag":
            tags = contact.tags if contact else []
            return ",".join(tags)
        if predicate.source == "subscription":
            subscribed = contact.is_subscribed if contact else True
            return "subscribed" if subscribed else "unsubscribed"
        # Authoring tools may prefix variables with "@"
        name = (predicate.variable or "").lstrip("@")
        return bindings.get(name)

    def evaluate_predicate(
        self,
        predicate: Predicate,
        bindings: Dict[str, str],
        contact: Optional[ContactData] = None
    ) -> bool:
        """
        Evaluate one predicate. String comparisons are case-insensitive;
        numeric comparisons on non-numeric input are false.
        """
        actual_value = self._actual_value(predicate, bindings, contact)
        operator = predicate.operator

        if operator == "isSet":
            return actual_value is not None and actual_value != ""
        if operator == "isNotSet":
            return actual_value is None or actual_value == ""

        actual_value_str = str(actual_value or "").lower()
        expected_value_str = str(predicate.value or "").lower()

        if predicate.source == "tag" and operator in ("contains", "notContains", "equals", "notEquals"):
            tags = {tag.strip().lower() for tag in (contact.tags if contact else [])}
            has_tag = expected_value_str.strip() in tags
            condition_met = has_tag if operator in ("contains", "equals") else not has_tag
        elif operator == "equals":
            condition_met = actual_value_str == expected_value_str
        elif operator == "notEquals":
            condition_met = actual_value_str != expected_value_str
        elif operator == "contains":
            condition_met = expected_value_str in actual_value_str
        elif operator == "notContains":
            condition_met = expected_value_str not in actual_value_str
        elif operator == "startsWith":
            condition_met = actual_value_str.startswith(expected_value_str)
        elif operator == "endsWith":
            condition_met = actual_value_str.endswith(expected_value_str)
        elif operator in ("greaterThan", "lessThan"):
            try:
                actual_number = float(actual_value_str)
                expected_number = float(expected_value_str)
            except (ValueError, TypeError):
                self.log_util.warning(
                    service_name="ProcessInternalNodeService",
                    message=f"[PROCESS_INTERNAL] {operator} comparison failed (non-numeric values): actual='{actual_value_str}', expected='{expected_value_str}'"
                )
                return False
            if operator == "greaterThan":
                condition_met = actual_number > expected_number
            else:
                condition_met = actual_number < expected_number
        else:
            self.log_util.warning(
                service_name="ProcessInternalNodeService",
                message=f"[PROCESS_INTERNAL] Unknown operator: '{operator}', defaulting to False"
            )
            condition_met = False

        self.log_util.debug(
            service_name="ProcessInternalNodeService",
            message=f"[PROCESS_INTERNAL] Predicate {predicate.id}: {predicate.source} '{actual_value_str}' {operator} '{expected_value_str}' = {condition_met}"
        )
        return condition_met

    def delay_seconds(self, config: DelayConfig) -> int:
        """
        Delay duration converted to seconds
        """
        return config.duration * UNIT_SECONDS.get(config.unit, 1)
