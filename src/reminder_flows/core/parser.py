"""
Flow document parser
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from jsonschema import Draft7Validator

from ..exceptions import FlowParseError, FlowValidationError
from ..models.flow import (
    Flow, Step, Connection, TriggerEvent, StepType, EdgeType, ConditionType,
    WaitConfig, MessageConfig, ConditionConfig
)


logger = logging.getLogger(__name__)


FLOW_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "trigger_event", "steps"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "name": {"type": "string", "minLength": 1},
        "description": {"type": ["string", "null"]},
        "trigger_event": {"enum": [e.value for e in TriggerEvent]},
        "trigger_delay_days": {"type": "integer", "minimum": 0},
        "is_active": {"type": "boolean"},
        "apply_to_all": {"type": "boolean"},
        "target_entity_ids": {"type": "array", "items": {"type": ["string", "integer"]}},
        "version": {"type": "integer", "minimum": 1},
        "steps": {
            "type": "array",
            "items": {
                "type": "object",
                "anyOf": [{"required": ["step_key"]}, {"required": ["key"]}],
                "properties": {
                    "step_key": {"type": "string", "minLength": 1},
                    "key": {"type": "string", "minLength": 1},
                    "step_type": {"enum": [t.value for t in StepType]},
                    "type": {"enum": [t.value for t in StepType]},
                    "label": {"type": ["string", "null"]},
                    "config": {"type": ["object", "null"]},
                },
            },
        },
        "connections": {
            "type": "array",
            "items": {
                "type": "object",
                "anyOf": [
                    {"required": ["source_step_key", "target_step_key"]},
                    {"required": ["source", "target"]},
                ],
                "properties": {
                    "edge_type": {"enum": [e.value for e in EdgeType]},
                    "type": {"enum": [e.value for e in EdgeType]},
                },
            },
        },
    },
}


class FlowParser:
    """Turns flow documents (dict, JSON, YAML) into validated Flow models"""

    def __init__(self):
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }
        self._schema = Draft7Validator(FLOW_DOCUMENT_SCHEMA)

    def parse(self, source: Union[str, Path, Dict[str, Any]], validate: bool = True) -> Flow:
        """
        Parse a flow document

        Args:
            source: a dict, a path to a .json/.yaml file, or a JSON/YAML string
            validate: run the save-time graph validation

        Returns:
            Flow: the parsed flow

        Raises:
            FlowParseError: the document cannot be read
            FlowValidationError: the document or graph is invalid
        """
        if isinstance(source, dict):
            return self.parse_dict(source, validate=validate)

        if isinstance(source, Path):
            return self.parse_file(source, validate=validate)

        if isinstance(source, str):
            path = Path(source)
            if len(source) < 4096 and '\n' not in source and path.is_file():
                return self.parse_file(path, validate=validate)
            return self.parse_string(source, validate=validate)

        raise FlowParseError(f"Unsupported source type: {type(source)}")

    def parse_file(self, file_path: Union[str, Path], validate: bool = True) -> Flow:
        file_path = Path(file_path)
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise FlowParseError(f"Unsupported file format: {suffix}")

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        data = self.parsers[suffix](content)
        if not isinstance(data, dict):
            raise FlowParseError("Flow document must be a mapping")
        return self.parse_dict(data, validate=validate)

    def parse_string(self, content: str, validate: bool = True) -> Flow:
        # YAML is a superset of JSON, so one loader covers both
        data = self._parse_yaml(content)
        if not isinstance(data, dict):
            raise FlowParseError("Flow document must be a mapping")
        return self.parse_dict(data, validate=validate)

    def parse_dict(self, data: Dict[str, Any], validate: bool = True) -> Flow:
        if 'flow' in data and isinstance(data['flow'], dict):
            data = data['flow']

        schema_errors = self._schema_errors(data)
        if schema_errors:
            raise FlowValidationError(schema_errors)

        errors: List[str] = []
        flow = Flow(
            name=data['name'],
            description=data.get('description'),
            trigger_event=TriggerEvent(data['trigger_event']),
            trigger_delay_days=data.get('trigger_delay_days', 0),
            is_active=data.get('is_active', False),
            apply_to_all=data.get('apply_to_all', True),
            target_entity_ids={str(e) for e in data.get('target_entity_ids', [])},
            version=data.get('version', 1),
        )
        if data.get('id') is not None:
            flow.id = str(data['id'])

        for step_data in data.get('steps', []):
            try:
                step = self._parse_step(step_data)
            except (TypeError, ValueError) as e:
                errors.append(str(e))
                continue
            if step.key in flow.steps:
                errors.append(f"Duplicate step key '{step.key}'")
                continue
            flow.add_step(step)

        for edge_data in data.get('connections', []):
            flow.connections.append(self._parse_connection(edge_data))

        if validate:
            errors.extend(flow.validate())
        if errors:
            raise FlowValidationError(errors)

        return flow

    def _schema_errors(self, data: Dict[str, Any]) -> List[str]:
        errors = []
        for error in sorted(self._schema.iter_errors(data), key=lambda e: list(e.path)):
            field_path = ".".join(str(p) for p in error.path) or "<root>"
            errors.append(f"{field_path}: {error.message}")
        return errors

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise FlowParseError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise FlowParseError(f"Failed to parse JSON: {e}")

    def _parse_step(self, data: Dict[str, Any]) -> Step:
        key = data.get('step_key', data.get('key'))
        step_type = StepType(data.get('step_type', data.get('type')))
        raw = data.get('config') or {}

        # position_x / position_y are editor metadata and intentionally not kept
        return Step(
            key=key,
            type=step_type,
            label=data.get('label') or key,
            description=data.get('description'),
            config=self._parse_config(key, step_type, raw),
        )

    def _parse_config(self, key: str, step_type: StepType, raw: Dict[str, Any]):
        if step_type == StepType.WAIT:
            try:
                return WaitConfig(
                    delay_days=int(raw.get('delay_days') or 0),
                    delay_hours=int(raw.get('delay_hours') or 0),
                )
            except (TypeError, ValueError):
                raise ValueError(f"Wait step '{key}' delay must be an integer")

        if step_type.is_send:
            return MessageConfig(
                message=raw.get('message') or "",
                subject=raw.get('subject'),
            )

        if step_type == StepType.CONDITION:
            value = raw.get('condition_value')
            return ConditionConfig(
                condition_type=raw.get('condition_type') or ConditionType.TASK_PENDING.value,
                condition_value=None if value is None else str(value),
            )

        return None

    def _parse_connection(self, data: Dict[str, Any]) -> Connection:
        connection = Connection(
            source=data.get('source_step_key', data.get('source', '')),
            target=data.get('target_step_key', data.get('target', '')),
            type=EdgeType(data.get('edge_type', data.get('type', 'default'))),
            label=data.get('label'),
        )
        edge_key = data.get('edge_key', data.get('key'))
        if edge_key:
            connection.key = edge_key
        return connection


def flow_to_dict(flow: Flow) -> Dict[str, Any]:
    """Serialize a flow into the document shape FlowParser reads"""
    return {
        'id': flow.id,
        'name': flow.name,
        'description': flow.description,
        'trigger_event': flow.trigger_event.value,
        'trigger_delay_days': flow.trigger_delay_days,
        'is_active': flow.is_active,
        'apply_to_all': flow.apply_to_all,
        'target_entity_ids': sorted(flow.target_entity_ids),
        'version': flow.version,
        'steps': [
            {
                'step_key': step.key,
                'step_type': step.type.value,
                'label': step.label,
                'description': step.description,
                'config': step_config_to_dict(step),
            }
            for step in flow.steps.values()
        ],
        'connections': [
            {
                'edge_key': c.key,
                'source_step_key': c.source,
                'target_step_key': c.target,
                'edge_type': c.type.value,
                'label': c.label,
            }
            for c in flow.connections
        ],
    }


def step_config_to_dict(step: Step) -> Dict[str, Any]:
    config = step.config
    if isinstance(config, WaitConfig):
        return {'delay_days': config.delay_days, 'delay_hours': config.delay_hours}
    if isinstance(config, MessageConfig):
        data = {'message': config.message}
        if config.subject is not None:
            data['subject'] = config.subject
        return data
    if isinstance(config, ConditionConfig):
        return {
            'condition_type': config.condition_type,
            'condition_value': config.condition_value,
        }
    return {}
