from __future__ import annotations

import io
import logging
import operator
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, TextIO, Union

from blueprint_compiler import (
	ASTNode,
	AssignmentStatement,
	BinaryExpression,
	BlueprintDecl,
	BooleanLiteral,
	CallExpression,
	ErrorKind,
	Expression,
	FunctionDecl,
	Identifier,
	IfStatement,
	InputExpression,
	InstanceDecl,
	LanguageError,
	LetConstDecl,
	NumberLiteral,
	PrintStatement,
	ProgramNode,
	StringLiteral,
	SymbolTable,
	SymbolTableBuilder,
	VarDecl,
	WhileStatement,
	YieldStatement,
	qualify,
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class RuntimeIssue(LanguageError):
	pass


class ValueKind(Enum):
	NONE = auto()
	INT = auto()
	STRING = auto()
	INSTANCE = auto()


@dataclass
class Value:
	"""Tagged runtime value. Instance fields are owned; `copy` never shares them."""

	kind: ValueKind = ValueKind.NONE
	int_val: int = 0
	str_val: str = ""
	blueprint_name: str = ""
	fields: Optional[Dict[str, "Value"]] = None

	@classmethod
	def none(cls) -> "Value":
		return cls()

	@classmethod
	def of_int(cls, value: int) -> "Value":
		return cls(ValueKind.INT, int_val=value)

	@classmethod
	def of_string(cls, value: str) -> "Value":
		return cls(ValueKind.STRING, str_val=value)

	@classmethod
	def instance(cls, blueprint_name: str, fields: Optional[Dict[str, "Value"]] = None) -> "Value":
		copied = {name: value.copy() for name, value in (fields or {}).items()}
		return cls(ValueKind.INSTANCE, blueprint_name=blueprint_name, fields=copied)

	def copy(self) -> "Value":
		if self.fields is None:
			return Value(self.kind, self.int_val, self.str_val, self.blueprint_name)
		return Value.instance(self.blueprint_name, self.fields)

	def as_string(self) -> str:
		if self.kind == ValueKind.INT:
			return str(self.int_val)
		if self.kind == ValueKind.STRING:
			return self.str_val
		if self.kind == ValueKind.INSTANCE:
			return f"<instance of {self.blueprint_name}>"
		return ""

	def as_int(self, line: int = 0) -> int:
		if self.kind == ValueKind.INT:
			return self.int_val
		if self.kind == ValueKind.STRING and _INTEGER_TEXT.fullmatch(self.str_val.strip()):
			return int(self.str_val.strip())
		raise RuntimeIssue(ErrorKind.TYPE, f"Expected an integer, got {self._describe()}", line)

	def truthy(self) -> bool:
		if self.kind == ValueKind.INT:
			return self.int_val != 0
		if self.kind == ValueKind.STRING:
			return self.str_val != ""
		return False

	def to_python(self) -> Any:
		if self.kind == ValueKind.INT:
			return self.int_val
		if self.kind == ValueKind.STRING:
			return self.str_val
		if self.kind == ValueKind.INSTANCE:
			return {"blueprint": self.blueprint_name, "fields": {k: v.to_python() for k, v in (self.fields or {}).items()}}
		return None

	def _describe(self) -> str:
		if self.kind == ValueKind.STRING:
			return f"string '{self.str_val}'"
		if self.kind == ValueKind.INSTANCE:
			return f"instance of {self.blueprint_name}"
		return "none"


_INTEGER_TEXT = re.compile(r"[+-]?[0-9]+")
_LEADING_INTEGER = re.compile(r"\s*([+-]?[0-9]+)")


@dataclass
class Normal:
	pass


@dataclass
class Returning:
	value: Value


Completion = Union[Normal, Returning]
NORMAL = Normal()


_COMPARISONS: Dict[str, Callable[[int, int], bool]] = {
	"<=": operator.le,
	"!<": operator.ge,
	">": operator.gt,
	"<": operator.lt,
	"==": operator.eq,
}


@dataclass
class RunArtifacts:
	output: str
	steps: int
	result: Optional[Value] = None
	runtime_error: Optional[LanguageError] = None


class Interpreter:
	"""
	Tree-walking evaluator for blueprint programs.

	Names resolve dynamically: lookups walk the whole live frame stack from the
	innermost frame outwards, so a function body sees its caller's locals.
	Assignments and declarations always bind in the innermost frame.
	Instances are copied on every bind, read and method call.
	"""

	def __init__(
		self,
		*,
		stdin: Union[str, TextIO] = "",
		stdout: Optional[TextIO] = None,
		max_steps: Optional[int] = None,
		max_call_depth: Optional[int] = None,
	) -> None:
		self._stdin: TextIO = io.StringIO(stdin) if isinstance(stdin, str) else stdin
		self._capture = stdout is None
		self._stdout: TextIO = io.StringIO() if stdout is None else stdout
		self._max_steps = max_steps
		self._steps = 0
		self._max_call_depth = max_call_depth
		self._call_depth = 0
		self._line = 0

		self._symbols = SymbolTable()
		self._frames: List[Dict[str, Value]] = []
		self._declaration_path = ""

	@property
	def functions(self) -> Dict[str, FunctionDecl]:
		return self._symbols.functions

	@property
	def blueprints(self) -> Dict[str, BlueprintDecl]:
		return self._symbols.blueprints

	@property
	def steps(self) -> int:
		return self._steps

	def run(self, program: ProgramNode, symbols: Optional[SymbolTable] = None) -> RunArtifacts:
		try:
			result = self.execute(program, symbols)
			return RunArtifacts(output=self._captured_output(), steps=self._steps, result=result)
		except LanguageError as issue:
			return RunArtifacts(output=self._captured_output(), steps=self._steps, runtime_error=issue)

	def execute(self, program: ProgramNode, symbols: Optional[SymbolTable] = None) -> Optional[Value]:
		"""Run a program to completion; returns the value of a top-level yield, if any."""
		self._symbols = symbols if symbols is not None else SymbolTableBuilder().build(program)
		self._frames = []
		self._declaration_path = ""
		self._call_depth = 0
		try:
			completion = self._exec_block(program)
		except RecursionError:
			raise self._recursion_issue() from None
		if isinstance(completion, Returning):
			logger.debug("Program ended by top-level yield")
			return completion.value
		return None

	def evaluate(self, expr: Expression) -> Value:
		pushed = not self._frames
		if pushed:
			self._frames.append({})
		try:
			return self._eval_expression(expr)
		except RecursionError:
			raise self._recursion_issue() from None
		finally:
			if pushed:
				self._frames.pop()

	def call_function(self, name: str, args: List[Value], line: int = 0) -> Value:
		function = self.functions.get(name)
		if function is None:
			raise RuntimeIssue(ErrorKind.UNDEFINED_FUNCTION, f"Undefined function {name}", line)
		self._check_arity(function, args, line)
		frame = {param: arg.copy() for param, arg in zip(function.parameters, args)}
		return self._invoke(function, frame)

	def call_method(self, instance: Value, method_name: str, args: List[Value], line: int = 0) -> Value:
		if instance.kind != ValueKind.INSTANCE:
			raise RuntimeIssue(ErrorKind.TYPE, "Cannot call method on non-instance", line)
		blueprint = self.blueprints.get(instance.blueprint_name)
		if blueprint is None:
			raise RuntimeIssue(ErrorKind.UNDEFINED_BLUEPRINT, f"Unknown blueprint {instance.blueprint_name}", line)
		for member in blueprint.body:
			if isinstance(member, FunctionDecl) and member.name == method_name:
				self._check_arity(member, args, line)
				frame = {name: value.copy() for name, value in (instance.fields or {}).items()}
				for param, arg in zip(member.parameters, args):
					frame[param] = arg.copy()
				return self._invoke(member, frame, path=instance.blueprint_name)
		raise RuntimeIssue(ErrorKind.UNDEFINED_FUNCTION, f"Method {method_name} not found in {instance.blueprint_name}", line)

	def _invoke(self, function: FunctionDecl, frame: Dict[str, Value], path: Optional[str] = None) -> Value:
		logger.debug("Calling %s with %d argument(s)", function.name, len(function.parameters))
		saved_path = self._declaration_path
		if self._max_call_depth is not None and self._call_depth >= self._max_call_depth:
			raise RuntimeIssue(
				ErrorKind.RECURSION_LIMIT,
				f"Call depth exceeded {self._max_call_depth} in {function.name}",
				self._line,
			)
		if path is not None:
			self._declaration_path = path
		self._frames.append(frame)
		self._call_depth += 1
		try:
			for stmt in function.body:
				completion = self._exec_statement(stmt)
				if isinstance(completion, Returning):
					logger.debug("%s yielded %r", function.name, completion.value.as_string())
					return completion.value
		finally:
			self._call_depth -= 1
			self._frames.pop()
			self._declaration_path = saved_path
		return Value.none()

	def _check_arity(self, function: FunctionDecl, args: List[Value], line: int) -> None:
		if len(function.parameters) != len(args):
			raise RuntimeIssue(
				ErrorKind.ARITY,
				f"Expected {len(function.parameters)} arguments, got {len(args)}",
				line,
			)

	def _tick(self, line: int) -> None:
		self._steps += 1
		self._line = line
		if self._max_steps is not None and self._steps > self._max_steps:
			raise RuntimeIssue(ErrorKind.STEP_LIMIT, "Step limit exceeded (possible infinite loop).", line)

	def _recursion_issue(self) -> RuntimeIssue:
		logger.debug("Python recursion limit reached at line %d", self._line)
		return RuntimeIssue(ErrorKind.RECURSION_LIMIT, "Maximum recursion depth exceeded", self._line)

	# Statements --------------------------------------------------------------

	def _exec_block(self, block: ProgramNode) -> Completion:
		self._frames.append({})
		try:
			for stmt in block.statements:
				completion = self._exec_statement(stmt)
				if isinstance(completion, Returning):
					return completion
		finally:
			self._frames.pop()
		return NORMAL

	def _exec_statement(self, stmt: ASTNode) -> Completion:
		self._tick(stmt.line)

		if isinstance(stmt, ProgramNode):
			return self._exec_block(stmt)
		if isinstance(stmt, (BlueprintDecl, FunctionDecl)):
			# Registered by the symbol table pass before execution.
			return NORMAL
		if isinstance(stmt, VarDecl):
			value = self._eval_expression(stmt.initializer)
			if stmt.decl_kind == "integer" and value.kind != ValueKind.INT:
				raise RuntimeIssue(ErrorKind.TYPE, f"Expected integer for variable {stmt.name}", stmt.line)
			self._bind(stmt.name, value)
			return NORMAL
		if isinstance(stmt, LetConstDecl):
			self._bind(stmt.name, self._eval_expression(stmt.initializer))
			return NORMAL
		if isinstance(stmt, AssignmentStatement):
			self._bind(stmt.name, self._eval_expression(stmt.value))
			return NORMAL
		if isinstance(stmt, IfStatement):
			if self._eval_expression(stmt.condition).truthy():
				return self._exec_block(stmt.then_block)
			for condition, block in stmt.else_ifs:
				if self._eval_expression(condition).truthy():
					return self._exec_block(block)
			if stmt.else_block is not None:
				return self._exec_block(stmt.else_block)
			return NORMAL
		if isinstance(stmt, WhileStatement):
			# The body shares the enclosing frame across iterations.
			while self._eval_expression(stmt.condition).truthy():
				self._tick(stmt.line)
				for body_stmt in stmt.body.statements:
					completion = self._exec_statement(body_stmt)
					if isinstance(completion, Returning):
						return completion
			return NORMAL
		if isinstance(stmt, PrintStatement):
			value = self._eval_expression(stmt.expression)
			self._stdout.write(value.as_string() + "\n")
			return NORMAL
		if isinstance(stmt, YieldStatement):
			return Returning(self._eval_expression(stmt.expression))
		if isinstance(stmt, InstanceDecl):
			self._bind(stmt.instance_name, Value.instance(self._resolve_blueprint(stmt)))
			return NORMAL
		if isinstance(stmt, Expression):
			self._eval_expression(stmt)
			return NORMAL

		raise RuntimeIssue(ErrorKind.UNSUPPORTED_OPERATION, f"Unsupported statement: {stmt.__class__.__name__}", stmt.line)

	def _bind(self, name: str, value: Value) -> None:
		self._frames[-1][name] = value.copy()

	def _resolve_blueprint(self, stmt: InstanceDecl) -> str:
		scoped_name = qualify(self._declaration_path, stmt.blueprint_name)
		if scoped_name in self.blueprints:
			return scoped_name
		if stmt.blueprint_name in self.blueprints:
			return stmt.blueprint_name
		raise RuntimeIssue(ErrorKind.UNDEFINED_BLUEPRINT, f"Blueprint {stmt.blueprint_name} not defined", stmt.line)

	# Expressions -------------------------------------------------------------

	def _eval_expression(self, expr: ASTNode) -> Value:
		self._tick(expr.line)

		if isinstance(expr, NumberLiteral):
			return Value.of_int(expr.value)
		if isinstance(expr, StringLiteral):
			return Value.of_string(expr.value)
		if isinstance(expr, BooleanLiteral):
			return Value.of_int(1 if expr.value else 0)
		if isinstance(expr, Identifier):
			return self._lookup(expr.name, expr.line)
		if isinstance(expr, InputExpression):
			return self._read_input(expr)
		if isinstance(expr, BinaryExpression):
			return self._eval_binary(expr)
		if isinstance(expr, CallExpression):
			args = [self._eval_expression(arg) for arg in expr.arguments]
			if expr.receiver is not None:
				instance = self._find_instance(expr.receiver, expr.line)
				return self.call_method(instance, expr.name, args, line=expr.line)
			return self.call_function(expr.name, args, line=expr.line)

		raise RuntimeIssue(ErrorKind.UNSUPPORTED_OPERATION, f"Unsupported expression: {expr.__class__.__name__}", expr.line)

	def _lookup(self, name: str, line: int) -> Value:
		for frame in reversed(self._frames):
			if name in frame:
				return frame[name].copy()
		raise RuntimeIssue(ErrorKind.UNDEFINED_VARIABLE, f"Undefined variable {name}", line)

	def _find_instance(self, name: str, line: int) -> Value:
		# Bindings of the same name that are not instances are skipped.
		for frame in reversed(self._frames):
			value = frame.get(name)
			if value is not None and value.kind == ValueKind.INSTANCE:
				return value
		raise RuntimeIssue(ErrorKind.UNDEFINED_VARIABLE, f"Instance {name} not found", line)

	def _eval_binary(self, expr: BinaryExpression) -> Value:
		# Left-leaning chains such as 1 + 1 + ... + 1 are folded iteratively.
		spine = [expr]
		while isinstance(spine[-1].left, BinaryExpression):
			spine.append(spine[-1].left)
		result = self._eval_expression(spine[-1].left)
		for node in reversed(spine):
			if node is not expr:
				self._tick(node.line)
			right = self._eval_expression(node.right)
			result = self._apply(node.operator, result, right, node.line)
		return result

	def _apply(self, op: str, left: Value, right: Value, line: int) -> Value:
		if op == "+":
			if left.kind == ValueKind.STRING or right.kind == ValueKind.STRING:
				return Value.of_string(left.as_string() + right.as_string())
			return Value.of_int(left.as_int(line) + right.as_int(line))
		if op == "-":
			return Value.of_int(left.as_int(line) - right.as_int(line))
		if op == "*":
			return Value.of_int(left.as_int(line) * right.as_int(line))
		if op == "/":
			numerator = left.as_int(line)
			denominator = right.as_int(line)
			if denominator == 0:
				raise RuntimeIssue(ErrorKind.DIVISION_BY_ZERO, "Division by zero", line)
			quotient = abs(numerator) // abs(denominator)
			return Value.of_int(quotient if (numerator < 0) == (denominator < 0) else -quotient)
		if op == "==" and left.kind == ValueKind.STRING and right.kind == ValueKind.STRING:
			return Value.of_int(1 if left.str_val == right.str_val else 0)
		if op in _COMPARISONS:
			return Value.of_int(1 if _COMPARISONS[op](left.as_int(line), right.as_int(line)) else 0)
		if op == "&&":
			return Value.of_int(1 if left.truthy() and right.truthy() else 0)

		raise RuntimeIssue(ErrorKind.UNSUPPORTED_OPERATION, f"Invalid operation {op}", line)

	def _read_input(self, expr: InputExpression) -> Value:
		self._stdout.write(f"Enter {expr.input_type}: ")
		self._stdout.flush()
		raw = self._stdin.readline()
		if expr.input_type == "integer":
			match = _LEADING_INTEGER.match(raw)
			if match is None:
				raise RuntimeIssue(ErrorKind.INVALID_INPUT, "Invalid integer input", expr.line)
			return Value.of_int(int(match.group(1)))
		return Value.of_string(raw.rstrip("\r\n"))

	def _captured_output(self) -> str:
		if self._capture and isinstance(self._stdout, io.StringIO):
			return self._stdout.getvalue()
		return ""
