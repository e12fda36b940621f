"""Declaration extraction from Go syntax trees.

Walks the top level of a parsed Go file and produces the structured records
the rest of the pipeline works with: the package name, imports, and one record
per function, method, type, constant and variable.  Each record also carries
the names it references, collected syntactically from its own subtree, so the
dependency resolver never has to re-parse declaration text.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .errors import TreeSitterError
from .models import (
    GoConstantDefinition,
    GoFileInfo,
    GoFunctionInfo,
    GoParameter,
    GoReceiver,
    GoType,
    GoTypeDefinition,
    GoTypeKind,
    GoVariableDefinition,
    Import,
    Reference,
    ReferenceKind,
    SourceFile,
)
from .parser import CstNavigator, LanguageParser, iter_nodes, named_field_children, text_of

logger = logging.getLogger(__name__)

GO_BUILTIN_TYPES = frozenset({
    "any", "bool", "byte", "comparable", "complex64", "complex128", "error",
    "float32", "float64", "int", "int8", "int16", "int32", "int64", "rune",
    "string", "uint", "uint8", "uint16", "uint32", "uint64", "uintptr",
})

GO_BUILTIN_FUNCTIONS = frozenset({
    "append", "cap", "clear", "close", "complex", "copy", "delete", "imag",
    "len", "make", "max", "min", "new", "panic", "print", "println", "real",
    "recover",
})

GO_PREDECLARED_VALUES = frozenset({"nil", "true", "false", "iota", "_"})

_TYPE_WRAPPERS = ("pointer_type", "slice_type", "parenthesized_type")
_LOCAL_DECLARATORS = ("short_var_declaration", "range_clause", "receive_statement")


def _row(point: Any) -> int:
    return point[0] + 1


def go_type_from_node(node: Any, data: bytes) -> GoType:
    """Build a :class:`GoType`, recording pointer and slice prefixes as flags."""
    is_pointer = False
    is_slice = False
    current = node
    while current is not None and current.type in _TYPE_WRAPPERS:
        if current.type == "pointer_type":
            is_pointer = True
            current = current.named_children[0] if current.named_children else None
        elif current.type == "slice_type":
            is_slice = True
            current = current.child_by_field_name("element")
        else:
            current = current.named_children[0] if current.named_children else None
    if current is None:
        raise ValueError("type node without an element type")
    if current.type == "generic_type":
        current = current.child_by_field_name("type") or current
    name = "".join(text_of(current, data).split())
    return GoType(name=name, is_pointer=is_pointer, is_slice=is_slice)


def strip_string_literal(text: str) -> str:
    return text.strip().strip('"`')


# ===================================================================
# Reference collection
# ===================================================================

class _ReferenceCollector:
    """Collects the names a declaration subtree refers to.

    Identifiers in type positions become type references; ``f(...)`` is a
    call; ``pkg.F(...)`` with ``pkg`` an imported package is a qualified
    call; ``x.m(...)`` with ``x`` a local is a method call whose receiver
    type comes from ``x``'s declared type when it can be inferred.
    """

    def __init__(self, data: bytes, package_names: Set[str]) -> None:
        self.data = data
        self.package_names = package_names

    def collect(
        self,
        root: Any,
        locals_: Optional[Set[str]] = None,
        local_types: Optional[Dict[str, str]] = None,
        skip: Optional[Set[Tuple[int, int]]] = None,
    ) -> List[Reference]:
        locals_ = set(locals_ or ())
        local_types = dict(local_types or {})
        skip = set(skip or ())
        type_params: Set[str] = set()
        # Locals assigned from pkg.F(...) calls, mapped to the package name.
        origins: Dict[str, str] = {}
        self._collect_locals(root, locals_, local_types, type_params, origins)

        refs: List[Reference] = []
        seen: Set[Reference] = set()

        def add(ref: Reference) -> None:
            if ref not in seen:
                seen.add(ref)
                refs.append(ref)

        for node in iter_nodes(root):
            key = (node.start_byte, node.end_byte)
            if key in skip:
                continue
            kind = node.type
            if kind == "qualified_type":
                pkg = node.child_by_field_name("package")
                name = node.child_by_field_name("name")
                if pkg is not None and name is not None:
                    add(Reference(ReferenceKind.TYPE, self._text(name), qualifier=self._text(pkg)))
                skip.update(self._keys_below(node))
            elif kind == "type_identifier":
                name = self._text(node)
                if name not in GO_BUILTIN_TYPES and name not in type_params:
                    add(Reference(ReferenceKind.TYPE, name))
            elif kind == "call_expression":
                self._call_reference(node, locals_, local_types, origins, add, skip)
            elif kind == "selector_expression":
                operand = node.child_by_field_name("operand")
                field = node.child_by_field_name("field")
                if operand is None or field is None or operand.type != "identifier":
                    continue
                op_name = self._text(operand)
                if op_name in self.package_names and op_name not in locals_:
                    add(Reference(ReferenceKind.VALUE, self._text(field), qualifier=op_name))
                    skip.add((operand.start_byte, operand.end_byte))
            elif kind == "identifier":
                name = self._text(node)
                if (
                    name in locals_
                    or name in GO_PREDECLARED_VALUES
                    or name in GO_BUILTIN_FUNCTIONS
                    or name in self.package_names
                    or self._is_literal_key(node)
                ):
                    continue
                add(Reference(ReferenceKind.VALUE, name))
        return refs

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _text(self, node: Any) -> str:
        return text_of(node, self.data)

    def _keys_below(self, node: Any) -> Set[Tuple[int, int]]:
        return {(n.start_byte, n.end_byte) for n in iter_nodes(node)}

    def _call_reference(self, node, locals_, local_types, origins, add, skip) -> None:
        func = node.child_by_field_name("function")
        if func is None:
            return
        if func.type == "identifier":
            name = self._text(func)
            skip.add((func.start_byte, func.end_byte))
            if name in GO_BUILTIN_FUNCTIONS or name in locals_:
                return
            if name in GO_BUILTIN_TYPES:
                return
            add(Reference(ReferenceKind.CALL, name))
        elif func.type == "selector_expression":
            operand = func.child_by_field_name("operand")
            field = func.child_by_field_name("field")
            skip.add((func.start_byte, func.end_byte))
            if operand is None or field is None or operand.type != "identifier":
                return
            skip.add((operand.start_byte, operand.end_byte))
            op_name = self._text(operand)
            method = self._text(field)
            if op_name in self.package_names and op_name not in locals_:
                add(Reference(ReferenceKind.CALL, method, qualifier=op_name))
            else:
                if op_name not in locals_:
                    add(Reference(ReferenceKind.VALUE, op_name))
                receiver_type = local_types.get(op_name)
                qualifier = origins.get(op_name) if receiver_type is None else None
                add(Reference(ReferenceKind.METHOD_CALL, method, qualifier=qualifier, receiver_type=receiver_type))

    def _is_literal_key(self, node: Any) -> bool:
        """True for ``Name`` in a keyed struct literal element ``Name: value``."""
        parent = node.parent
        if parent is None or parent.type != "literal_element":
            return False
        keyed = parent.parent
        return keyed is not None and keyed.type == "keyed_element" and keyed.named_children[0] == parent

    def _collect_locals(self, root, locals_, local_types, type_params, origins) -> None:
        for node in iter_nodes(root):
            kind = node.type
            if kind in ("parameter_declaration", "variadic_parameter_declaration"):
                type_node = node.child_by_field_name("type")
                for name_node in named_field_children(node, "name"):
                    name = self._text(name_node)
                    locals_.add(name)
                    if type_node is not None:
                        local_types[name] = self._type_name(type_node)
            elif kind == "type_parameter_declaration":
                for name_node in named_field_children(node, "name"):
                    type_params.add(self._text(name_node))
            elif kind in ("var_spec", "const_spec") and node != root:
                type_node = node.child_by_field_name("type")
                for name_node in named_field_children(node, "name"):
                    name = self._text(name_node)
                    locals_.add(name)
                    if type_node is not None:
                        local_types[name] = self._type_name(type_node)
            elif kind in _LOCAL_DECLARATORS:
                left = node.child_by_field_name("left")
                right = node.child_by_field_name("right")
                if left is None:
                    continue
                names = [self._text(n) for n in left.named_children if n.type == "identifier"]
                locals_.update(names)
                if kind == "short_var_declaration" and right is not None:
                    values = right.named_children
                    for name, value in zip(names, values):
                        inferred = self._infer_type(value)
                        if inferred:
                            local_types[name] = inferred
                            continue
                        package = self._call_package(value)
                        if package is not None:
                            origins[name] = package
            elif kind == "type_switch_statement":
                alias = node.child_by_field_name("alias")
                if alias is not None:
                    locals_.update(self._text(n) for n in alias.named_children if n.type == "identifier")

    def _type_name(self, type_node: Any) -> str:
        go_type = go_type_from_node(type_node, self.data)
        return go_type.name

    def _call_package(self, value: Any) -> Optional[str]:
        """Package name of a ``pkg.F(...)`` call, else None."""
        if value.type != "call_expression":
            return None
        func = value.child_by_field_name("function")
        if func is None or func.type != "selector_expression":
            return None
        operand = func.child_by_field_name("operand")
        if operand is None or operand.type != "identifier":
            return None
        name = self._text(operand)
        return name if name in self.package_names else None

    def _infer_type(self, value: Any) -> Optional[str]:
        if value.type == "unary_expression":
            operand = value.child_by_field_name("operand")
            if operand is None:
                return None
            value = operand
        if value.type == "composite_literal":
            type_node = value.child_by_field_name("type")
            if type_node is not None and type_node.type in ("type_identifier", "qualified_type", "generic_type"):
                return self._type_name(type_node)
        return None


# ===================================================================
# Declaration extractor
# ===================================================================

class GoDeclarationExtractor:
    """Produces a :class:`GoFileInfo` from a parsed Go source file."""

    def __init__(self, parser: LanguageParser) -> None:
        self.parser = parser
        self.navigator = CstNavigator(parser.node_kinds)

    def extract(self, tree: Any, source: str, file_path: Path) -> GoFileInfo:
        data = source.encode("utf-8")
        kinds = self.parser.node_kinds
        info = GoFileInfo()
        children = self.navigator.top_level_nodes(tree.root_node)

        # Package and imports first: references in declarations need the
        # package names the file imports.
        for node in children:
            if node.type == kinds.package_clause:
                ident = next((c for c in node.named_children if c.type == "package_identifier"), None)
                if ident is not None:
                    info.package_name = text_of(ident, data)
            elif node.type == kinds.import_declaration:
                info.imports.extend(self._imports(node, data))
                info.import_ranges.append((_row(node.start_point), _row(node.end_point)))

        collector = _ReferenceCollector(data, {imp.package_name for imp in info.imports})
        for index, node in enumerate(children):
            if node.type == kinds.error:
                logger.debug("Skipping error node at %s:%d", file_path, _row(node.start_point))
                continue
            try:
                doc = self._doc_comment(children, index, data)
                if node.type in kinds.callables:
                    info.declarations.append(self._function(node, data, file_path, doc, collector))
                elif node.type == kinds.type_declaration:
                    info.declarations.extend(self._types(node, data, file_path, doc, collector))
                elif node.type == kinds.const_declaration:
                    info.declarations.extend(self._constants(node, data, file_path, doc, collector))
                elif node.type == kinds.var_declaration:
                    info.declarations.extend(self._variables(node, data, file_path, doc, collector))
            except (AttributeError, IndexError, ValueError) as exc:
                logger.debug(
                    "Skipping malformed %s at %s:%d: %s",
                    node.type, file_path, _row(node.start_point), exc,
                )

        self._classify_enums(info)
        return info

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def _imports(self, node: Any, data: bytes) -> List[Import]:
        imports: List[Import] = []
        for spec in self.navigator.find_declarations(node, "import_spec"):
            path_node = spec.child_by_field_name("path")
            if path_node is None:
                logger.debug("Import spec without path: %s", text_of(spec, data))
                continue
            name_node = spec.child_by_field_name("name")
            alias = text_of(name_node, data) if name_node is not None else None
            imports.append(Import(path=strip_string_literal(text_of(path_node, data)), alias=alias))
        return imports

    # ------------------------------------------------------------------
    # Functions and methods
    # ------------------------------------------------------------------

    def _function(self, node, data, file_path, doc, collector) -> GoFunctionInfo:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            raise ValueError("function without a name")

        receiver = None
        if node.type == self.parser.node_kinds.method:
            receiver = self._receiver(node.child_by_field_name("receiver"), data)

        parameters = self._parameters(node.child_by_field_name("parameters"), data)
        return_types = self._return_types(node.child_by_field_name("result"), data)

        local_types = {p.name: p.param_type.name for p in parameters if p.name}
        locals_ = set(local_types)
        if receiver is not None and receiver.name:
            locals_.add(receiver.name)
            local_types[receiver.name] = receiver.type_name
        references = collector.collect(
            node,
            locals_=locals_,
            local_types=local_types,
            skip={(name_node.start_byte, name_node.end_byte)},
        )
        if receiver is not None:
            receiver_ref = Reference(ReferenceKind.TYPE, receiver.type_name)
            if receiver_ref not in references:
                references.insert(0, receiver_ref)

        return GoFunctionInfo(
            name=text_of(name_node, data),
            receiver=receiver,
            parameters=parameters,
            return_types=return_types,
            body=text_of(node, data),
            start_line=_row(node.start_point),
            end_line=_row(node.end_point),
            file_path=file_path,
            doc_comment=doc,
            references=references,
        )

    def _receiver(self, params: Any, data: bytes) -> GoReceiver:
        if params is None or not params.named_children:
            raise ValueError("method without receiver")
        decl = params.named_children[0]
        type_node = decl.child_by_field_name("type")
        if type_node is None:
            raise ValueError("receiver without a type")
        go_type = go_type_from_node(type_node, data)
        name_node = decl.child_by_field_name("name")
        return GoReceiver(
            name=text_of(name_node, data) if name_node is not None else "",
            type_name=go_type.name,
            is_pointer=go_type.is_pointer,
        )

    def _parameters(self, params: Any, data: bytes) -> List[GoParameter]:
        result: List[GoParameter] = []
        if params is None:
            return result
        for decl in params.named_children:
            if decl.type not in ("parameter_declaration", "variadic_parameter_declaration"):
                continue
            type_node = decl.child_by_field_name("type")
            if type_node is None:
                continue
            go_type = go_type_from_node(type_node, data)
            if decl.type == "variadic_parameter_declaration":
                go_type = GoType(go_type.name, is_pointer=go_type.is_pointer, is_slice=True)
            names = named_field_children(decl, "name") or [None]
            for name_node in names:
                name = text_of(name_node, data) if name_node is not None else ""
                result.append(GoParameter(name=name, param_type=go_type))
        return result

    def _return_types(self, result: Any, data: bytes) -> List[GoType]:
        if result is None:
            return []
        if result.type != self.parser.node_kinds.parameter_list:
            return [go_type_from_node(result, data)]
        return [p.param_type for p in self._parameters(result, data)]

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def _types(self, node, data, file_path, doc, collector) -> List[GoTypeDefinition]:
        specs = [c for c in node.named_children if c.type in ("type_spec", "type_alias")]
        grouped = len(specs) != 1 or self._is_grouped(node)
        definitions = []
        for spec in specs:
            name_node = spec.child_by_field_name("name")
            type_node = spec.child_by_field_name("type")
            if name_node is None or type_node is None:
                logger.debug("Skipping incomplete type spec in %s", file_path)
                continue
            if spec.type == "type_alias":
                kind = GoTypeKind.ALIAS
            elif type_node.type == "struct_type":
                kind = GoTypeKind.STRUCT
            elif type_node.type == "interface_type":
                kind = GoTypeKind.INTERFACE
            else:
                kind = GoTypeKind.ALIAS
            span_node = spec if grouped else node
            params = spec.child_by_field_name("type_parameters")
            refs = collector.collect(type_node)
            if params is not None:
                param_names = {
                    text_of(n, data)
                    for p in params.named_children
                    for n in named_field_children(p, "name")
                }
                refs = [r for r in refs if r.qualifier or r.name not in param_names]
            definitions.append(
                GoTypeDefinition(
                    name=text_of(name_node, data),
                    kind=kind,
                    definition=self._definition_text("type", spec, span_node, grouped, data),
                    file_path=file_path,
                    dependencies=self.navigator.type_references(type_node, data),
                    start_line=_row(span_node.start_point),
                    end_line=_row(span_node.end_point),
                    doc_comment=doc if not grouped else "",
                    references=refs,
                )
            )
        return definitions

    # ------------------------------------------------------------------
    # Constants and variables
    # ------------------------------------------------------------------

    def _constants(self, node, data, file_path, doc, collector) -> List[GoConstantDefinition]:
        specs = self._specs(node, "const_spec")
        grouped = len(specs) != 1 or self._is_grouped(node)
        constants: List[GoConstantDefinition] = []
        last_type: Optional[GoType] = None
        last_values: List[str] = []
        for spec in specs:
            names = named_field_children(spec, "name")
            type_node = spec.child_by_field_name("type")
            value_node = spec.child_by_field_name("value")
            if value_node is not None:
                last_type = go_type_from_node(type_node, data) if type_node is not None else None
                last_values = [text_of(v, data) for v in value_node.named_children]
            # Without a value list, a grouped spec repeats the previous one.
            const_type = last_type
            span_node = spec if grouped else node
            refs = collector.collect(spec, skip=self._keys(names))
            for index, name_node in enumerate(names):
                constants.append(
                    GoConstantDefinition(
                        name=text_of(name_node, data),
                        value=last_values[index] if index < len(last_values) else "",
                        const_type=const_type,
                        start_line=_row(span_node.start_point),
                        end_line=_row(span_node.end_point),
                        file_path=file_path,
                        definition=self._definition_text("const", spec, span_node, grouped, data),
                        doc_comment=doc if not grouped else "",
                        references=refs,
                    )
                )
        return constants

    def _variables(self, node, data, file_path, doc, collector) -> List[GoVariableDefinition]:
        specs = self._specs(node, "var_spec")
        grouped = len(specs) != 1 or self._is_grouped(node)
        variables: List[GoVariableDefinition] = []
        for spec in specs:
            names = named_field_children(spec, "name")
            type_node = spec.child_by_field_name("type")
            value_node = spec.child_by_field_name("value")
            values = [text_of(v, data) for v in value_node.named_children] if value_node is not None else []
            var_type = go_type_from_node(type_node, data) if type_node is not None else None
            span_node = spec if grouped else node
            refs = collector.collect(spec, skip=self._keys(names))
            for index, name_node in enumerate(names):
                if values:
                    initial = values[index] if len(values) == len(names) else text_of(value_node, data)
                else:
                    initial = None
                variables.append(
                    GoVariableDefinition(
                        name=text_of(name_node, data),
                        var_type=var_type,
                        initial_value=initial,
                        start_line=_row(span_node.start_point),
                        end_line=_row(span_node.end_point),
                        file_path=file_path,
                        definition=self._definition_text("var", spec, span_node, grouped, data),
                        doc_comment=doc if not grouped else "",
                        references=refs,
                    )
                )
        return variables

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _keys(nodes: List[Any]) -> Set[Tuple[int, int]]:
        return {(n.start_byte, n.end_byte) for n in nodes}

    @staticmethod
    def _is_grouped(node: Any) -> bool:
        return any(child.type == "(" for child in node.children) or any(
            child.type.endswith("_spec_list") for child in node.named_children
        )

    @staticmethod
    def _specs(node: Any, spec_kind: str) -> List[Any]:
        specs = []
        for child in node.named_children:
            if child.type == spec_kind:
                specs.append(child)
            elif child.type.endswith("_spec_list"):
                specs.extend(c for c in child.named_children if c.type == spec_kind)
        return specs

    @staticmethod
    def _definition_text(keyword: str, spec: Any, span_node: Any, grouped: bool, data: bytes) -> str:
        if grouped:
            return f"{keyword} {text_of(spec, data)}"
        return text_of(span_node, data)

    def _doc_comment(self, children: List[Any], index: int, data: bytes) -> str:
        """Comment lines directly above the declaration at *index*."""
        lines: List[str] = []
        expected_row = children[index].start_point[0] - 1
        j = index - 1
        while j >= 0 and children[j].type == self.parser.node_kinds.comment:
            if children[j].end_point[0] != expected_row:
                break
            lines.insert(0, text_of(children[j], data))
            expected_row = children[j].start_point[0] - 1
            j -= 1
        return "\n".join(lines)

    @staticmethod
    def _classify_enums(info: GoFileInfo) -> None:
        typed_constants = {c.const_type.name for c in info.constants() if c.const_type is not None}
        for type_def in info.types():
            if type_def.kind == GoTypeKind.ALIAS and type_def.name in typed_constants:
                type_def.kind = GoTypeKind.ENUM


def analyze_source(path: Path, source_code: str, parser: LanguageParser) -> SourceFile:
    """Parse *source_code* and extract its declarations into a :class:`SourceFile`."""
    tree = parser.parse(source_code)
    if tree.root_node is None:
        raise TreeSitterError(f"empty syntax tree for {path}")
    info = GoDeclarationExtractor(parser).extract(tree, source_code, path)
    logger.debug(
        "Extracted %d declarations and %d imports from %s",
        len(info.declarations), len(info.imports), path,
    )
    return SourceFile(
        path=path,
        source_code=source_code,
        syntax_tree=tree,
        language=parser.language,
        language_specific=info,
    )
