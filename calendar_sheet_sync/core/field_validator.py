"""
扩展字段校验器
"""
import math
from typing import Any, Dict, Iterable, List, Optional, Union

from loguru import logger

from ..config.config import (
    DEFAULT_CUSTOM_FIELDS,
    FIELD_TYPE_NUMBER,
    FIELD_TYPE_TEXT,
    ExtensionPolicy,
    FieldDefinition,
)
from .errors import ValidationError


class FieldValidator:
    """按字段定义校验、规范化扩展字段（如优先级、备注）"""

    def __init__(self, definitions: Iterable[FieldDefinition] = DEFAULT_CUSTOM_FIELDS,
                 policy: Union[str, ExtensionPolicy] = ExtensionPolicy.REJECT):
        self.definitions: Dict[str, FieldDefinition] = {}
        for definition in definitions:
            self.definitions[definition.key] = definition
        self.policy = ExtensionPolicy(policy)

    def validate(self, field_key: str, raw_value: Any) -> Any:
        """
        校验单个字段值

        缺失值返回默认值；超出范围的值按策略拒绝（抛出 ValidationError）或截断。
        """
        definition = self.definitions.get(field_key)
        if definition is None:
            raise ValidationError(field_key, "unknown extension field")

        if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
            return definition.default

        if definition.type == FIELD_TYPE_NUMBER:
            return self._validate_number(definition, raw_value)
        return self._validate_text(definition, raw_value)

    def validate_record(self, raw_values: Dict[str, Any]) -> Dict[str, Any]:
        """校验所有已注册字段，raw_values 以字段 key 为键"""
        return {
            key: self.validate(key, raw_values.get(key))
            for key in self.definitions
        }

    def defaults(self) -> Dict[str, Any]:
        return {key: definition.default for key, definition in self.definitions.items()}

    def _validate_number(self, definition: FieldDefinition, raw_value: Any) -> Union[int, float]:
        if isinstance(raw_value, bool):
            raise ValidationError(definition.key, f"expected a number, got {raw_value!r}")

        if isinstance(raw_value, (int, float)):
            value = float(raw_value)
        else:
            try:
                value = float(str(raw_value).strip())
            except ValueError:
                raise ValidationError(definition.key, f"expected a number, got {raw_value!r}")

        # NaN 与任何边界比较都为假，无穷大截断后没有意义
        if not math.isfinite(value):
            raise ValidationError(definition.key, f"expected a finite number, got {raw_value!r}")

        low, high = definition.min_value, definition.max_value
        out_of_range = (low is not None and value < low) or (high is not None and value > high)
        if out_of_range:
            if self.policy is ExtensionPolicy.REJECT:
                raise ValidationError(
                    definition.key,
                    definition.validation or f"{value:g} is outside [{low}, {high}]"
                )
            clamped = value
            if low is not None:
                clamped = max(clamped, low)
            if high is not None:
                clamped = min(clamped, high)
            logger.debug(f"Clamped {definition.key} from {value:g} to {clamped:g}")
            value = float(clamped)

        return int(value) if value.is_integer() else value

    def _validate_text(self, definition: FieldDefinition, raw_value: Any) -> str:
        value = raw_value if isinstance(raw_value, str) else str(raw_value)

        limit = definition.max_length
        if limit is not None and len(value) > limit:
            if self.policy is ExtensionPolicy.REJECT:
                raise ValidationError(
                    definition.key,
                    definition.validation or f"longer than {limit} characters"
                )
            logger.debug(f"Truncated {definition.key} from {len(value)} to {limit} characters")
            value = value[:limit]

        return value

    def validate_all(self, definitions: Optional[Iterable[FieldDefinition]] = None) -> List[str]:
        """检查字段定义本身的结构完整性，返回错误列表而不抛出异常"""
        if definitions is None:
            definitions = self.definitions.values()

        errors = []
        seen_keys, seen_columns, seen_names = set(), set(), set()

        for index, definition in enumerate(definitions):
            label = definition.key or f"#{index + 1}"

            if not definition.key:
                errors.append(f"Custom field {label} missing key")
            if not definition.column or not definition.name:
                errors.append(f"Custom field {label} missing required properties")

            if definition.type not in (FIELD_TYPE_NUMBER, FIELD_TYPE_TEXT):
                errors.append(f"Custom field {label} has unknown type '{definition.type}'")
            elif definition.type == FIELD_TYPE_NUMBER:
                low, high = definition.min_value, definition.max_value
                if low is not None and high is not None and low > high:
                    errors.append(f"Custom field {label} has min greater than max")
            elif definition.max_length is not None and definition.max_length < 0:
                errors.append(f"Custom field {label} has negative maxLength")

            if definition.key and definition.key in seen_keys:
                errors.append(f"Custom field {label} is defined more than once")
            if definition.column and definition.column in seen_columns:
                errors.append(f"Custom field {label} reuses column {definition.column}")
            if definition.name and definition.name in seen_names:
                errors.append(f"Custom field {label} reuses header '{definition.name}'")

            seen_keys.add(definition.key)
            seen_columns.add(definition.column)
            seen_names.add(definition.name)

        return errors
