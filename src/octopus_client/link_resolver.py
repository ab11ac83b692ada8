"""
LinkResolver module for expanding server-advertised hypermedia link templates

Templates follow RFC 6570 (levels 1-3, plus prefix and explode modifiers for
simple values and lists). Server relation names are matched case-insensitively.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Any, Optional, List, Tuple, Iterator, Union
from urllib.parse import quote

from .outcomes import LinkResolutionError


UNRESERVED = "-._~"
RESERVED = ":/?#[]@!$&'()*+,;=%"


@dataclass(frozen=True)
class OperatorRules:
    """Expansion behaviour for one RFC 6570 operator"""
    first: str
    separator: str
    named: bool
    if_empty: str
    allow_reserved: bool


OPERATORS = {
    '': OperatorRules('', ',', False, '', False),
    '+': OperatorRules('', ',', False, '', True),
    '#': OperatorRules('#', ',', False, '', True),
    '.': OperatorRules('.', '.', False, '', False),
    '/': OperatorRules('/', '/', False, '', False),
    ';': OperatorRules(';', ';', True, '', False),
    '?': OperatorRules('?', '&', True, '=', False),
    '&': OperatorRules('&', '&', True, '=', False),
}


@dataclass(frozen=True)
class VariableSpec:
    name: str
    prefix: Optional[int] = None
    explode: bool = False


@dataclass(frozen=True)
class Expression:
    """A single {...} expression inside a template"""
    operator: str
    variables: Tuple[VariableSpec, ...]

    @property
    def required(self) -> bool:
        # Simple string expansion sits inside path segments, so it cannot be dropped
        return self.operator == ''


TemplatePart = Union[str, Expression]


@lru_cache(maxsize=512)
def parse_template(template: str) -> Tuple[TemplatePart, ...]:
    """
    Parse a URI template into literal and expression parts

    Args:
        template: RFC 6570 URI template

    Returns:
        Tuple of literal strings and Expression objects in template order

    Raises:
        LinkResolutionError: If braces are unbalanced or an expression is malformed
    """
    parts: List[TemplatePart] = []
    position = 0

    while position < len(template):
        open_index = template.find('{', position)
        close_index = template.find('}', position)

        if open_index == -1:
            if close_index != -1:
                raise LinkResolutionError(f"Unbalanced '}}' in template: {template}")
            parts.append(template[position:])
            break

        if close_index != -1 and close_index < open_index:
            raise LinkResolutionError(f"Unbalanced '}}' in template: {template}")

        if open_index > position:
            parts.append(template[position:open_index])

        end_index = template.find('}', open_index)
        if end_index == -1:
            raise LinkResolutionError(f"Unterminated expression in template: {template}")

        body = template[open_index + 1:end_index]
        if '{' in body:
            raise LinkResolutionError(f"Nested '{{' in template: {template}")

        parts.append(_parse_expression(body, template))
        position = end_index + 1

    return tuple(parts)


def _parse_expression(body: str, template: str) -> Expression:
    if not body:
        raise LinkResolutionError(f"Empty expression in template: {template}")

    operator = ''
    if body[0] in OPERATORS:
        operator = body[0]
        body = body[1:]
    elif not (body[0].isalnum() or body[0] == '_'):
        raise LinkResolutionError(f"Unsupported operator '{body[0]}' in template: {template}")

    variables = []
    for raw_spec in body.split(','):
        explode = raw_spec.endswith('*')
        if explode:
            raw_spec = raw_spec[:-1]

        prefix = None
        if ':' in raw_spec:
            raw_spec, raw_prefix = raw_spec.split(':', 1)
            if not raw_prefix.isdigit():
                raise LinkResolutionError(f"Invalid prefix modifier in template: {template}")
            prefix = int(raw_prefix)

        if not raw_spec or not all(c.isalnum() or c in '_.' for c in raw_spec):
            raise LinkResolutionError(f"Invalid variable name '{raw_spec}' in template: {template}")

        variables.append(VariableSpec(raw_spec, prefix, explode))

    return Expression(operator, tuple(variables))


def is_link(identifier: str) -> bool:
    """True for identifiers that are usable links rather than collection-scoped IDs"""
    return identifier.startswith(('/', '~/', 'http://', 'https://'))


def template_variables(template: str) -> List[str]:
    """Return the names of all variables in a template, in order of appearance"""
    names = []
    for part in parse_template(template):
        if isinstance(part, Expression):
            names.extend(spec.name for spec in part.variables if spec.name not in names)
    return names


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _encode(value: str, allow_reserved: bool) -> str:
    return quote(value, safe=UNRESERVED + (RESERVED if allow_reserved else ''))


def _is_undefined(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple)) and not value:
        return True
    return False


def _expand_expression(expression: Expression, parameters: Dict[str, Any], template: str) -> str:
    rules = OPERATORS[expression.operator]
    expanded = []

    for spec in expression.variables:
        value = parameters.get(spec.name)

        if _is_undefined(value):
            if expression.required:
                raise LinkResolutionError(
                    f"Missing required parameter '{spec.name}' for template: {template}"
                )
            continue

        if isinstance(value, (list, tuple)):
            items = [_encode(_stringify(item), rules.allow_reserved) for item in value]
            if spec.explode:
                if rules.named:
                    expanded.append(rules.separator.join(f"{spec.name}={item}" for item in items))
                else:
                    expanded.append(rules.separator.join(items))
            else:
                joined = ','.join(items)
                expanded.append(f"{spec.name}={joined}" if rules.named else joined)
            continue

        text = _stringify(value)
        if spec.prefix is not None:
            text = text[:spec.prefix]
        encoded = _encode(text, rules.allow_reserved)

        if rules.named:
            expanded.append(f"{spec.name}={encoded}" if encoded else f"{spec.name}{rules.if_empty}")
        else:
            expanded.append(encoded)

    if not expanded:
        return ''
    return rules.first + rules.separator.join(expanded)


def expand(template: str, parameters: Optional[Dict[str, Any]] = None) -> str:
    """
    Expand a URI template with the supplied parameters

    Args:
        template: RFC 6570 URI template
        parameters: Variable values; None or empty lists count as undefined

    Returns:
        Concrete URI with optional expressions omitted when undefined

    Raises:
        LinkResolutionError: If the template is malformed or a required parameter is missing
    """
    parameters = parameters or {}

    # Plain links are the common case
    if '{' not in template and '}' not in template:
        return template

    result = []
    for part in parse_template(template):
        if isinstance(part, Expression):
            result.append(_expand_expression(part, parameters, template))
        else:
            result.append(part)
    return ''.join(result)


class LinkCollection(Mapping):
    """Read-only, case-insensitive mapping of relation name to URI template"""

    def __init__(self, links: Optional[Mapping] = None):
        self._links: Dict[str, Tuple[str, str]] = {}
        for relation, template in (links or {}).items():
            if not isinstance(template, str):
                continue
            self._links[relation.lower()] = (relation, template)

    def __getitem__(self, relation: str) -> str:
        try:
            return self._links[relation.lower()][1]
        except KeyError:
            raise KeyError(relation) from None

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._links.values())

    def __len__(self) -> int:
        return len(self._links)

    def __repr__(self) -> str:
        return f"LinkCollection({dict(self.items())!r})"

    def has(self, relation: str) -> bool:
        return relation.lower() in self._links

    def template_variables(self, relation: str) -> List[str]:
        return template_variables(self._require(relation))

    def resolve(self, relation: str, parameters: Optional[Dict[str, Any]] = None) -> str:
        return expand(self._require(relation), parameters)

    def _require(self, relation: str) -> str:
        if not self.has(relation):
            known = ', '.join(sorted(self)) or 'none'
            raise LinkResolutionError(f"Unknown link relation '{relation}' (available: {known})")
        return self[relation]


class LinkResolver:
    """Resolves named relations from a link set into concrete request paths"""

    @staticmethod
    def resolve(links: Mapping, relation: str, parameters: Optional[Dict[str, Any]] = None) -> str:
        """
        Expand the template bound to a relation

        Args:
            links: Relation name to template mapping (plain dict or LinkCollection)
            relation: Relation to resolve, matched case-insensitively
            parameters: Template variable values

        Returns:
            Concrete URI or path

        Raises:
            LinkResolutionError: For unknown relations, malformed templates
                or missing required parameters
        """
        if not isinstance(links, LinkCollection):
            links = LinkCollection(links)
        return links.resolve(relation, parameters)
