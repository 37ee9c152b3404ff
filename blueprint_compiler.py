"""Blueprint language front end: lexer, parser, AST, symbol table, printers, and compilation engine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from string import ascii_letters, digits
from typing import Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


# ---------------------------------------------------------------------------
# Diagnostic infrastructure


class Severity(Enum):
	INFO = auto()
	WARNING = auto()
	ERROR = auto()


class ErrorKind(Enum):
	SYNTAX = "SyntaxError"
	UNDEFINED_VARIABLE = "UndefinedVariable"
	UNDEFINED_FUNCTION = "UndefinedFunction"
	UNDEFINED_BLUEPRINT = "UndefinedBlueprint"
	ARITY = "ArityError"
	TYPE = "TypeError"
	DIVISION_BY_ZERO = "DivisionByZero"
	UNSUPPORTED_OPERATION = "UnsupportedOperation"
	INVALID_INPUT = "InvalidInput"
	UNTERMINATED_STRING = "UnterminatedString"
	UNEXPECTED_CHARACTER = "UnexpectedCharacter"
	STEP_LIMIT = "StepLimitExceeded"
	RECURSION_LIMIT = "RecursionLimit"


@dataclass
class Diagnostic:
	severity: Severity
	message: str
	line: Optional[int] = None
	hint: Optional[str] = None
	kind: Optional[ErrorKind] = None


class DiagnosticEngine:
	def __init__(self) -> None:
		self._items: List[Diagnostic] = []

	@property
	def items(self) -> List[Diagnostic]:
		return self._items

	def report(
		self,
		severity: Severity,
		message: str,
		line: Optional[int] = None,
		hint: Optional[str] = None,
		kind: Optional[ErrorKind] = None,
	) -> None:
		self._items.append(Diagnostic(severity, message, line, hint, kind))


class LanguageError(Exception):
	"""A fatal lexing, parsing or evaluation failure tied to a source line."""

	def __init__(self, kind: ErrorKind, message: str, line: int = 0, hint: Optional[str] = None) -> None:
		super().__init__(message)
		self.kind = kind
		self.message = message
		self.line = line
		self.hint = hint

	def __str__(self) -> str:
		return f"{self.message} at line {self.line}"


class LexError(LanguageError):
	pass


class ParseError(LanguageError):
	def __init__(self, message: str, expected: str, found: str, line: int, hint: Optional[str] = None) -> None:
		super().__init__(ErrorKind.SYNTAX, f"{message} but got '{found}'", line, hint)
		self.expected = expected
		self.found = found


def format_error(error: LanguageError) -> str:
	return f"[{error.kind.value}] line {error.line}: {error.message}"


# ---------------------------------------------------------------------------
# Lexer


class TokenKind(Enum):
	VAR = auto()
	INTEGER = auto()
	BLUEPRINT = auto()
	DEFINE = auto()
	CHECK_IF = auto()
	IF = auto()
	ELSE_WHEN = auto()
	OTHERWISE = auto()
	REPEAT_WHILE = auto()
	LETS_PRINT = auto()
	SCANNING_USER_INPUT = auto()
	YIELD = auto()
	INSTANCE = auto()
	LET = auto()
	CONST = auto()
	TRUE = auto()
	FALSE = auto()
	IDENT = auto()
	NUMBER = auto()
	STRING = auto()
	PLUS = auto()
	MINUS = auto()
	STAR = auto()
	SLASH = auto()
	AND_AND = auto()
	ASSIGN = auto()
	EQ = auto()
	LTE = auto()
	LT = auto()
	NOT_LT = auto()
	GT = auto()
	LPAREN = auto()
	RPAREN = auto()
	LBRACE = auto()
	RBRACE = auto()
	SEMI = auto()
	COMMA = auto()
	DOT = auto()
	EOF = auto()


KEYWORDS: Dict[str, TokenKind] = {
	"var": TokenKind.VAR,
	"integer": TokenKind.INTEGER,
	"blueprint": TokenKind.BLUEPRINT,
	"define": TokenKind.DEFINE,
	"check_if": TokenKind.CHECK_IF,
	"if": TokenKind.IF,
	"else_when": TokenKind.ELSE_WHEN,
	"otherwise": TokenKind.OTHERWISE,
	"repeat_while": TokenKind.REPEAT_WHILE,
	"lets_print": TokenKind.LETS_PRINT,
	"scanning_user_input": TokenKind.SCANNING_USER_INPUT,
	"yield": TokenKind.YIELD,
	"instance": TokenKind.INSTANCE,
	"let": TokenKind.LET,
	"const": TokenKind.CONST,
	"true": TokenKind.TRUE,
	"false": TokenKind.FALSE,
}


SYMBOLS: Dict[str, TokenKind] = {
	"+": TokenKind.PLUS,
	"-": TokenKind.MINUS,
	"*": TokenKind.STAR,
	"/": TokenKind.SLASH,
	"&&": TokenKind.AND_AND,
	":=": TokenKind.ASSIGN,
	"==": TokenKind.EQ,
	"<=": TokenKind.LTE,
	"<": TokenKind.LT,
	"!<": TokenKind.NOT_LT,
	">": TokenKind.GT,
	"(": TokenKind.LPAREN,
	")": TokenKind.RPAREN,
	"{": TokenKind.LBRACE,
	"}": TokenKind.RBRACE,
	";": TokenKind.SEMI,
	",": TokenKind.COMMA,
	".": TokenKind.DOT,
}


_KIND_TEXT: Dict[TokenKind, str] = {kind: f"'{text}'" for text, kind in {**KEYWORDS, **SYMBOLS}.items()}
_KIND_TEXT.update({TokenKind.IDENT: "identifier", TokenKind.NUMBER: "number", TokenKind.STRING: "string", TokenKind.EOF: "end of input"})


def describe_kind(kind: TokenKind) -> str:
	return _KIND_TEXT[kind]


@dataclass
class Token:
	kind: TokenKind
	lexeme: str
	line: int


class Lexer:
	"""Maximal-munch scanner; the first malformed character aborts the scan."""

	def __init__(self, source: str) -> None:
		self.source = source
		self.length = len(source)
		self.index = 0
		self.line = 1

	def tokenize(self) -> List[Token]:
		tokens: List[Token] = []
		while not self._is_eof():
			ch = self._peek()
			if ch in " \t\r":
				self._advance()
			elif ch == "\n":
				self._advance()
				self.line += 1
			elif ch == "/" and self._peek_next() == "/":
				self._consume_comment()
			elif ch in ascii_letters or ch == "_":
				tokens.append(self._consume_identifier())
			elif ch in digits:
				tokens.append(self._consume_number())
			elif ch == '"':
				tokens.append(self._consume_string())
			else:
				tokens.append(self._consume_symbol())
		tokens.append(Token(TokenKind.EOF, "", self.line))
		return tokens

	def _consume_comment(self) -> None:
		while not self._is_eof() and self._peek() != "\n":
			self._advance()

	def _consume_identifier(self) -> Token:
		line = self.line
		lexeme = self._consume_while(lambda c: c in ascii_letters or c in digits or c == "_")
		return Token(KEYWORDS.get(lexeme, TokenKind.IDENT), lexeme, line)

	def _consume_number(self) -> Token:
		line = self.line
		return Token(TokenKind.NUMBER, self._consume_while(lambda c: c in digits), line)

	def _consume_string(self) -> Token:
		line = self.line
		self._advance()  # opening quote
		start_index = self.index
		while not self._is_eof() and self._peek() != '"':
			if self._advance() == "\n":
				self.line += 1
		if self._is_eof():
			raise LexError(ErrorKind.UNTERMINATED_STRING, "Unterminated string", self.line)
		value = self.source[start_index:self.index]
		self._advance()  # closing quote
		return Token(TokenKind.STRING, value, line)

	def _consume_symbol(self) -> Token:
		ch = self._advance()
		candidate = ch + self._peek_next_char()
		if len(candidate) == 2 and candidate in SYMBOLS:
			self._advance()
			return Token(SYMBOLS[candidate], candidate, self.line)
		if ch in SYMBOLS:
			return Token(SYMBOLS[ch], ch, self.line)
		raise LexError(ErrorKind.UNEXPECTED_CHARACTER, f"Unexpected character '{ch}'", self.line)

	def _consume_while(self, predicate) -> str:
		start_index = self.index
		while not self._is_eof() and predicate(self._peek()):
			self._advance()
		return self.source[start_index:self.index]

	def _advance(self) -> str:
		ch = self.source[self.index]
		self.index += 1
		return ch

	def _peek(self) -> str:
		return self.source[self.index]

	def _peek_next(self) -> str:
		if self.index + 1 >= self.length:
			return ""
		return self.source[self.index + 1]

	def _peek_next_char(self) -> str:
		# Character after the one just consumed by _advance.
		return "" if self._is_eof() else self._peek()

	def _is_eof(self) -> bool:
		return self.index >= self.length


# ---------------------------------------------------------------------------
# AST definitions
#
# Line numbers are excluded from equality so trees compare structurally.


@dataclass
class ASTNode:
	line: int = field(compare=False)


class Statement(ASTNode):
	pass


class Expression(ASTNode):
	pass


@dataclass
class ProgramNode(Statement):
	"""Root of a compilation unit; also the body of every nested block."""

	statements: List[ASTNode]


@dataclass
class BlueprintDecl(Statement):
	name: str
	body: List[ASTNode]


@dataclass
class VarDecl(Statement):
	decl_kind: str
	name: str
	initializer: Expression


@dataclass
class LetConstDecl(Statement):
	is_const: bool
	name: str
	initializer: Expression


@dataclass
class FunctionDecl(Statement):
	name: str
	parameters: List[str]
	body: List[ASTNode]


@dataclass
class IfStatement(Statement):
	condition: Expression
	then_block: ProgramNode
	else_ifs: List[Tuple[Expression, ProgramNode]]
	else_block: Optional[ProgramNode]


@dataclass
class WhileStatement(Statement):
	condition: Expression
	body: ProgramNode


@dataclass
class PrintStatement(Statement):
	expression: Expression


@dataclass
class AssignmentStatement(Statement):
	name: str
	value: Expression


@dataclass
class YieldStatement(Statement):
	expression: Expression


@dataclass
class InstanceDecl(Statement):
	blueprint_name: str
	instance_name: str


@dataclass
class InputExpression(Expression):
	input_type: str


@dataclass
class BinaryExpression(Expression):
	operator: str
	left: Expression
	right: Expression


@dataclass
class Identifier(Expression):
	name: str


@dataclass
class NumberLiteral(Expression):
	value: int


@dataclass
class StringLiteral(Expression):
	value: str


@dataclass
class BooleanLiteral(Expression):
	value: bool


@dataclass
class CallExpression(Expression):
	name: str
	arguments: List[Expression]
	receiver: Optional[str] = None

	@property
	def qualified_name(self) -> str:
		return self.name if self.receiver is None else f"{self.receiver}.{self.name}"


def qualify(path: str, name: str) -> str:
	return name if not path else f"{path}.{name}"


# ---------------------------------------------------------------------------
# Parser


class Parser:
	"""Recursive-descent parser with one token of lookahead and no error recovery."""

	max_nesting = 100

	def __init__(self, tokens: List[Token]) -> None:
		self.tokens = tokens
		self.index = 0
		self._nesting = 0

	@property
	def line(self) -> int:
		"""Line of the token the parser is looking at."""
		return self._peek().line

	def parse_program(self) -> ProgramNode:
		statements: List[ASTNode] = []
		while not self._is_at_end():
			statements.append(self._parse_statement())
		return ProgramNode(line=1, statements=statements)

	def _parse_statement(self) -> ASTNode:
		kind = self._peek().kind
		if kind == TokenKind.BLUEPRINT:
			return self._parse_blueprint()
		if kind in (TokenKind.VAR, TokenKind.INTEGER):
			return self._parse_var_decl()
		if kind in (TokenKind.LET, TokenKind.CONST):
			return self._parse_let_const_decl()
		if kind == TokenKind.DEFINE:
			return self._parse_function()
		if kind in (TokenKind.CHECK_IF, TokenKind.IF):
			return self._parse_if()
		if kind == TokenKind.REPEAT_WHILE:
			return self._parse_while()
		if kind == TokenKind.LETS_PRINT:
			return self._parse_print()
		if kind == TokenKind.SCANNING_USER_INPUT:
			node = self._parse_input()
			self._expect(TokenKind.SEMI, "Expected ';'")
			return node
		if kind == TokenKind.YIELD:
			return self._parse_yield()
		if kind == TokenKind.INSTANCE:
			return self._parse_instance()
		if kind == TokenKind.IDENT:
			ident = self._advance_token()
			if self._match(TokenKind.ASSIGN):
				value = self._parse_expression()
				self._expect(TokenKind.SEMI, "Expected ';' after assignment")
				return AssignmentStatement(line=ident.line, name=ident.lexeme, value=value)
			if self._match(TokenKind.DOT):
				method = self._expect(TokenKind.IDENT, "Expected method name after '.'")
				self._expect(TokenKind.LPAREN, "Expected '(' after method name")
				call = self._finish_call(ident, method.lexeme, receiver=ident.lexeme)
				self._expect(TokenKind.SEMI, "Expected ';' after method call")
				return call
			if self._match(TokenKind.LPAREN):
				call = self._finish_call(ident, ident.lexeme)
				self._expect(TokenKind.SEMI, "Expected ';' after call")
				return call
			self._match(TokenKind.SEMI)
			return Identifier(line=ident.line, name=ident.lexeme)
		expr = self._parse_expression()
		self._match(TokenKind.SEMI)
		return expr

	def _parse_blueprint(self) -> BlueprintDecl:
		keyword = self._expect(TokenKind.BLUEPRINT, "Expected 'blueprint'")
		name = self._expect(TokenKind.IDENT, "Expected blueprint name")
		lbrace = self._expect(TokenKind.LBRACE, "Expected '{'")
		body: List[ASTNode] = []
		self._descend(lbrace)
		try:
			while not self._check(TokenKind.RBRACE):
				if self._check(TokenKind.DEFINE):
					body.append(self._parse_function())
				elif self._check(TokenKind.BLUEPRINT):
					body.append(self._parse_blueprint())
				else:
					raise self._error("Expected function or blueprint definition in blueprint", "function or blueprint definition")
		finally:
			self._nesting -= 1
		self._expect(TokenKind.RBRACE, "Expected '}'")
		return BlueprintDecl(line=keyword.line, name=name.lexeme, body=body)

	def _parse_var_decl(self) -> VarDecl:
		decl = self._advance_token()
		name = self._expect(TokenKind.IDENT, "Expected variable name")
		self._expect(TokenKind.ASSIGN, "Expected ':='")
		initializer = self._parse_expression()
		self._expect(TokenKind.SEMI, "Expected ';'")
		return VarDecl(line=decl.line, decl_kind=decl.lexeme, name=name.lexeme, initializer=initializer)

	def _parse_let_const_decl(self) -> LetConstDecl:
		decl = self._advance_token()
		name = self._expect(TokenKind.IDENT, "Expected variable name")
		self._expect(TokenKind.ASSIGN, "Expected ':='")
		initializer = self._parse_expression()
		self._expect(TokenKind.SEMI, "Expected ';'")
		return LetConstDecl(line=decl.line, is_const=decl.kind == TokenKind.CONST, name=name.lexeme, initializer=initializer)

	def _parse_function(self) -> FunctionDecl:
		keyword = self._expect(TokenKind.DEFINE, "Expected 'define'")
		name = self._expect(TokenKind.IDENT, "Expected function name")
		self._expect(TokenKind.LPAREN, "Expected '(' after function name")
		parameters: List[str] = []
		if not self._check(TokenKind.RPAREN):
			parameters.append(self._expect(TokenKind.IDENT, "Expected parameter name").lexeme)
			while self._match(TokenKind.COMMA):
				parameters.append(self._expect(TokenKind.IDENT, "Expected parameter name").lexeme)
		self._expect(TokenKind.RPAREN, "Expected ')' after parameters")
		body = self._parse_block("Expected '{' after function definition")
		return FunctionDecl(line=keyword.line, name=name.lexeme, parameters=parameters, body=body.statements)

	def _parse_if(self) -> IfStatement:
		keyword = self._advance_token()
		condition = self._parse_condition("condition")
		then_block = self._parse_block("Expected '{'")
		else_ifs: List[Tuple[Expression, ProgramNode]] = []
		while self._match(TokenKind.ELSE_WHEN):
			arm_condition = self._parse_condition("else_when condition")
			else_ifs.append((arm_condition, self._parse_block("Expected '{'")))
		else_block = None
		if self._match(TokenKind.OTHERWISE):
			else_block = self._parse_block("Expected '{'")
		return IfStatement(line=keyword.line, condition=condition, then_block=then_block, else_ifs=else_ifs, else_block=else_block)

	def _parse_while(self) -> WhileStatement:
		keyword = self._expect(TokenKind.REPEAT_WHILE, "Expected 'repeat_while'")
		condition = self._parse_condition("condition")
		body = self._parse_block("Expected '{'")
		return WhileStatement(line=keyword.line, condition=condition, body=body)

	def _parse_print(self) -> PrintStatement:
		keyword = self._expect(TokenKind.LETS_PRINT, "Expected 'lets_print'")
		self._expect(TokenKind.LBRACE, "Expected '{' before expression")
		expr = self._parse_expression()
		self._expect(TokenKind.RBRACE, "Expected '}' after expression")
		self._match(TokenKind.SEMI)
		return PrintStatement(line=keyword.line, expression=expr)

	def _parse_input(self) -> InputExpression:
		keyword = self._expect(TokenKind.SCANNING_USER_INPUT, "Expected 'scanning_user_input'")
		self._expect(TokenKind.LBRACE, "Expected '{'")
		if not (self._check(TokenKind.INTEGER) or self._check(TokenKind.IDENT)):
			raise self._error("Expected input type", "input type")
		input_type = self._advance_token().lexeme
		self._expect(TokenKind.RBRACE, "Expected '}'")
		return InputExpression(line=keyword.line, input_type=input_type)

	def _parse_yield(self) -> YieldStatement:
		keyword = self._expect(TokenKind.YIELD, "Expected 'yield'")
		expr = self._parse_expression()
		self._expect(TokenKind.SEMI, "Expected ';' after yield")
		return YieldStatement(line=keyword.line, expression=expr)

	def _parse_instance(self) -> InstanceDecl:
		keyword = self._expect(TokenKind.INSTANCE, "Expected 'instance'")
		blueprint = self._expect(TokenKind.IDENT, "Expected blueprint name")
		name = self._expect(TokenKind.IDENT, "Expected instance name")
		self._expect(TokenKind.SEMI, "Expected ';'")
		return InstanceDecl(line=keyword.line, blueprint_name=blueprint.lexeme, instance_name=name.lexeme)

	def _parse_condition(self, what: str) -> Expression:
		self._expect(TokenKind.LPAREN, f"Expected '(' before {what}")
		condition = self._parse_expression()
		self._expect(TokenKind.RPAREN, f"Expected ')' after {what}")
		return condition

	def _parse_block(self, open_message: str) -> ProgramNode:
		lbrace = self._expect(TokenKind.LBRACE, open_message)
		statements: List[ASTNode] = []
		self._descend(lbrace)
		try:
			while not self._check(TokenKind.RBRACE):
				if self._is_at_end():
					raise self._error("Expected '}'", describe_kind(TokenKind.RBRACE))
				statements.append(self._parse_statement())
		finally:
			self._nesting -= 1
		self._expect(TokenKind.RBRACE, "Expected '}'")
		return ProgramNode(line=lbrace.line, statements=statements)

	def _finish_call(self, ident: Token, name: str, receiver: Optional[str] = None) -> CallExpression:
		# The opening '(' has already been consumed.
		arguments: List[Expression] = []
		if not self._check(TokenKind.RPAREN):
			arguments.append(self._parse_expression())
			while self._match(TokenKind.COMMA):
				arguments.append(self._parse_expression())
		self._expect(TokenKind.RPAREN, "Expected ')' after arguments")
		return CallExpression(line=ident.line, name=name, arguments=arguments, receiver=receiver)

	# Expressions -------------------------------------------------------------

	def _parse_expression(self) -> Expression:
		self._descend(self._peek())
		try:
			expr = self._parse_chain()
			while self._check(TokenKind.AND_AND):
				operator = self._advance_token()
				right = self._parse_chain()
				expr = BinaryExpression(line=operator.line, operator=operator.lexeme, left=expr, right=right)
			return expr
		finally:
			self._nesting -= 1

	def _parse_chain(self) -> Expression:
		# Additive and comparison operators share one left-associative level.
		expr = self._parse_term()
		while self._peek().kind in _CHAIN_OPERATORS:
			operator = self._advance_token()
			right = self._parse_term()
			expr = BinaryExpression(line=operator.line, operator=operator.lexeme, left=expr, right=right)
		return expr

	def _parse_term(self) -> Expression:
		expr = self._parse_factor()
		while self._check(TokenKind.STAR) or self._check(TokenKind.SLASH):
			operator = self._advance_token()
			right = self._parse_factor()
			expr = BinaryExpression(line=operator.line, operator=operator.lexeme, left=expr, right=right)
		return expr

	def _parse_factor(self) -> Expression:
		token = self._peek()
		if self._match(TokenKind.NUMBER):
			return NumberLiteral(line=token.line, value=int(token.lexeme))
		if self._match(TokenKind.STRING):
			return StringLiteral(line=token.line, value=token.lexeme)
		if self._match(TokenKind.TRUE) or self._match(TokenKind.FALSE):
			return BooleanLiteral(line=token.line, value=token.kind == TokenKind.TRUE)
		if self._match(TokenKind.LPAREN):
			expr = self._parse_expression()
			self._expect(TokenKind.RPAREN, "Expected ')' after expression")
			return expr
		if self._match(TokenKind.IDENT):
			if self._match(TokenKind.DOT):
				method = self._expect(TokenKind.IDENT, "Expected method name after '.'")
				self._expect(TokenKind.LPAREN, "Expected '(' after method name")
				return self._finish_call(token, method.lexeme, receiver=token.lexeme)
			if self._match(TokenKind.LPAREN):
				return self._finish_call(token, token.lexeme)
			return Identifier(line=token.line, name=token.lexeme)
		if self._check(TokenKind.SCANNING_USER_INPUT):
			return self._parse_input()
		raise self._error("Unexpected token", "expression")

	# Utility parsing helpers -------------------------------------------------

	def _match(self, kind: TokenKind) -> bool:
		if self._check(kind):
			self.index += 1
			return True
		return False

	def _check(self, kind: TokenKind) -> bool:
		return self._peek().kind == kind

	def _peek(self) -> Token:
		return self.tokens[self.index]

	def _advance_token(self) -> Token:
		token = self.tokens[self.index]
		if token.kind != TokenKind.EOF:
			self.index += 1
		return token

	def _expect(self, kind: TokenKind, message: str) -> Token:
		if self._check(kind):
			return self._advance_token()
		raise self._error(message, describe_kind(kind), hint=self._hint_for_expect(kind, self._peek()))

	def _is_at_end(self) -> bool:
		return self._check(TokenKind.EOF)

	def _descend(self, token: Token) -> None:
		# Callers undo the increment in a finally block.
		self._nesting += 1
		if self._nesting > self.max_nesting:
			self._nesting -= 1
			raise LanguageError(
				ErrorKind.RECURSION_LIMIT,
				f"Nesting deeper than {self.max_nesting} levels",
				token.line,
				hint="Split deeply nested blocks or parentheses into smaller functions.",
			)

	def _error(self, message: str, expected: str, hint: Optional[str] = None) -> ParseError:
		token = self._peek()
		found = token.lexeme if token.kind != TokenKind.EOF else "end of input"
		return ParseError(message, expected, found, token.line, hint)

	def _hint_for_expect(self, expected: TokenKind, got: Token) -> Optional[str]:
		if expected == TokenKind.SEMI:
			return "Declarations, assignments, calls and yields must end with ';'."
		if expected == TokenKind.ASSIGN:
			return "Bindings use ':=', for example: var name := \"Bo\";"
		if expected == TokenKind.RBRACE:
			return "Blocks end with '}'. Check for a missing closing brace or an extra '{' earlier."
		if expected == TokenKind.LPAREN:
			return "Conditions and calls need parentheses, for example: repeat_while (i <= 3) { ... }"
		if expected == TokenKind.IDENT and got.kind in KEYWORDS.values():
			return f"'{got.lexeme}' is a reserved word and cannot be used as a name."
		return None


_CHAIN_OPERATORS = {
	TokenKind.PLUS,
	TokenKind.MINUS,
	TokenKind.LTE,
	TokenKind.NOT_LT,
	TokenKind.GT,
	TokenKind.LT,
	TokenKind.EQ,
}


# ---------------------------------------------------------------------------
# Symbol table


@dataclass
class SymbolTable:
	functions: Dict[str, FunctionDecl] = field(default_factory=dict)
	blueprints: Dict[str, BlueprintDecl] = field(default_factory=dict)


class SymbolTableBuilder:
	"""Registers every function and blueprint under its dot-qualified name before execution."""

	def __init__(self, diagnostics: Optional[DiagnosticEngine] = None) -> None:
		self.diagnostics = diagnostics

	def build(self, program: Optional[ProgramNode]) -> SymbolTable:
		table = SymbolTable()
		if program is not None:
			self._collect(program.statements, "", table)
		return table

	def _collect(self, statements: List[ASTNode], path: str, table: SymbolTable) -> None:
		for stmt in statements:
			if isinstance(stmt, BlueprintDecl):
				full_name = qualify(path, stmt.name)
				self._define(table.blueprints, full_name, stmt, "blueprint")
				self._collect(stmt.body, full_name, table)
			elif isinstance(stmt, FunctionDecl):
				self._define(table.functions, qualify(path, stmt.name), stmt, "function")
				self._collect(stmt.body, path, table)
			elif isinstance(stmt, IfStatement):
				self._collect(stmt.then_block.statements, path, table)
				for _condition, block in stmt.else_ifs:
					self._collect(block.statements, path, table)
				if stmt.else_block is not None:
					self._collect(stmt.else_block.statements, path, table)
			elif isinstance(stmt, WhileStatement):
				self._collect(stmt.body.statements, path, table)
			elif isinstance(stmt, ProgramNode):
				self._collect(stmt.statements, path, table)

	def _define(self, registry: Dict, name: str, node: Union[FunctionDecl, BlueprintDecl], what: str) -> None:
		if name in registry and self.diagnostics is not None:
			self.diagnostics.report(
				Severity.WARNING,
				f"Duplicate {what} '{name}'; the later declaration wins.",
				node.line,
			)
		logger.debug("Registered %s %s (line %d)", what, name, node.line)
		registry[name] = node


# ---------------------------------------------------------------------------
# AST printing


def format_ast(program: ASTNode) -> str:
	"""Render the tree one node per line as Kind("value"), two spaces per level.

	Walks with an explicit stack so long operator chains do not exhaust the
	interpreter's recursion limit.
	"""
	lines: List[str] = []
	# Entries are (depth, node) or (depth, label) for the If arm headers.
	pending: List[Tuple[int, Union[ASTNode, str]]] = [(0, program)]
	while pending:
		depth, item = pending.pop()
		if isinstance(item, str):
			lines.append(f'{"  " * depth}{item}("")')
			continue
		label, value, children = _ast_entry(item, depth)
		lines.append(f'{"  " * depth}{label}("{value}")')
		pending.extend(reversed(children))
	return "\n".join(lines)


def _ast_entry(node: ASTNode, depth: int) -> Tuple[str, str, List[Tuple[int, Union[ASTNode, str]]]]:
	inner = depth + 1
	if isinstance(node, ProgramNode):
		return "Program", "", [(inner, child) for child in node.statements]
	if isinstance(node, BlueprintDecl):
		return "Blueprint", node.name, [(inner, child) for child in node.body]
	if isinstance(node, VarDecl):
		return "VarDecl", node.decl_kind, [(inner, Identifier(line=node.line, name=node.name)), (inner, node.initializer)]
	if isinstance(node, LetConstDecl):
		return ("ConstDecl" if node.is_const else "LetDecl"), node.name, [(inner, node.initializer)]
	if isinstance(node, FunctionDecl):
		return "Function", node.name, [(inner, child) for child in node.body]
	if isinstance(node, IfStatement):
		children: List[Tuple[int, Union[ASTNode, str]]] = [(inner, node.condition), (inner, "Then"), (depth + 2, node.then_block)]
		for condition, block in node.else_ifs:
			children += [(inner, "ElseWhen"), (depth + 2, condition), (depth + 2, "Then"), (depth + 3, block)]
		if node.else_block is not None:
			children += [(inner, "Else"), (depth + 2, node.else_block)]
		return "If", "", children
	if isinstance(node, WhileStatement):
		return "While", "", [(inner, node.condition), (inner, node.body)]
	if isinstance(node, PrintStatement):
		return "Print", "", [(inner, node.expression)]
	if isinstance(node, InputExpression):
		return "Input", node.input_type, []
	if isinstance(node, BinaryExpression):
		return "BinaryOp", node.operator, [(inner, node.left), (inner, node.right)]
	if isinstance(node, Identifier):
		return "Identifier", node.name, []
	if isinstance(node, NumberLiteral):
		return "Number", str(node.value), []
	if isinstance(node, StringLiteral):
		return "String", node.value, []
	if isinstance(node, BooleanLiteral):
		return "Boolean", "true" if node.value else "false", []
	if isinstance(node, AssignmentStatement):
		return "Assignment", node.name, [(inner, node.value)]
	if isinstance(node, CallExpression):
		return "Call", node.qualified_name, [(inner, arg) for arg in node.arguments]
	if isinstance(node, YieldStatement):
		return "Yield", "", [(inner, node.expression)]
	if isinstance(node, InstanceDecl):
		return "Instance", f"{node.blueprint_name} {node.instance_name}", []
	raise TypeError(f"Unsupported node: {node.__class__.__name__}")


_PRECEDENCE: Dict[str, int] = {"&&": 0, "*": 2, "/": 2}
_CHAIN_LEVEL = 1


def _precedence(operator: str) -> int:
	return _PRECEDENCE.get(operator, _CHAIN_LEVEL)


class SourceFormatter:
	"""Re-serializes an AST into source text that parses back to an equal tree."""

	indent = "    "

	def format(self, program: ProgramNode) -> str:
		lines: List[str] = []
		self._statements(program.statements, 0, lines)
		return "\n".join(lines) + "\n"

	def _statements(self, statements: List[ASTNode], depth: int, lines: List[str]) -> None:
		for stmt in statements:
			self._statement(stmt, depth, lines)

	def _block(self, header: str, statements: List[ASTNode], depth: int, lines: List[str]) -> None:
		pad = self.indent * depth
		lines.append(f"{pad}{header} {{")
		self._statements(statements, depth + 1, lines)
		lines.append(f"{pad}}}")

	def _statement(self, node: ASTNode, depth: int, lines: List[str]) -> None:
		pad = self.indent * depth
		if isinstance(node, BlueprintDecl):
			self._block(f"blueprint {node.name}", node.body, depth, lines)
		elif isinstance(node, FunctionDecl):
			self._block(f"define {node.name}({', '.join(node.parameters)})", node.body, depth, lines)
		elif isinstance(node, VarDecl):
			lines.append(f"{pad}{node.decl_kind} {node.name} := {self.expression(node.initializer)};")
		elif isinstance(node, LetConstDecl):
			keyword = "const" if node.is_const else "let"
			lines.append(f"{pad}{keyword} {node.name} := {self.expression(node.initializer)};")
		elif isinstance(node, IfStatement):
			lines.append(f"{pad}check_if ({self.expression(node.condition)}) {{")
			self._statements(node.then_block.statements, depth + 1, lines)
			for condition, block in node.else_ifs:
				lines.append(f"{pad}}} else_when ({self.expression(condition)}) {{")
				self._statements(block.statements, depth + 1, lines)
			if node.else_block is not None:
				lines.append(f"{pad}}} otherwise {{")
				self._statements(node.else_block.statements, depth + 1, lines)
			lines.append(f"{pad}}}")
		elif isinstance(node, WhileStatement):
			self._block(f"repeat_while ({self.expression(node.condition)})", node.body.statements, depth, lines)
		elif isinstance(node, PrintStatement):
			lines.append(f"{pad}lets_print {{{self.expression(node.expression)}}};")
		elif isinstance(node, AssignmentStatement):
			lines.append(f"{pad}{node.name} := {self.expression(node.value)};")
		elif isinstance(node, YieldStatement):
			lines.append(f"{pad}yield {self.expression(node.expression)};")
		elif isinstance(node, InstanceDecl):
			lines.append(f"{pad}instance {node.blueprint_name} {node.instance_name};")
		elif isinstance(node, ProgramNode):
			self._statements(node.statements, depth, lines)
		elif isinstance(node, (Identifier, CallExpression)):
			lines.append(f"{pad}{self.expression(node)};")
		elif isinstance(node, BinaryExpression) and isinstance(self._leftmost(node), (Identifier, CallExpression, InputExpression)):
			# A leading identifier or input form would be read back as a statement of its own.
			lines.append(f"{pad}({self.expression(node)});")
		elif isinstance(node, Expression):
			lines.append(f"{pad}{self.expression(node)};")
		else:
			raise TypeError(f"Unsupported node: {node.__class__.__name__}")

	def expression(self, node: ASTNode) -> str:
		if isinstance(node, NumberLiteral):
			return str(node.value)
		if isinstance(node, StringLiteral):
			return f'"{node.value}"'
		if isinstance(node, BooleanLiteral):
			return "true" if node.value else "false"
		if isinstance(node, Identifier):
			return node.name
		if isinstance(node, InputExpression):
			return f"scanning_user_input {{{node.input_type}}}"
		if isinstance(node, CallExpression):
			arguments = ", ".join(self.expression(arg) for arg in node.arguments)
			return f"{node.qualified_name}({arguments})"
		if isinstance(node, BinaryExpression):
			level = _precedence(node.operator)
			left = self.expression(node.left)
			right = self.expression(node.right)
			if isinstance(node.left, BinaryExpression) and _precedence(node.left.operator) < level:
				left = f"({left})"
			if isinstance(node.right, BinaryExpression) and _precedence(node.right.operator) <= level:
				right = f"({right})"
			return f"{left} {node.operator} {right}"
		raise TypeError(f"Unsupported expression: {node.__class__.__name__}")

	def _leftmost(self, node: ASTNode) -> ASTNode:
		while isinstance(node, BinaryExpression):
			node = node.left
		return node


def format_source(program: ProgramNode) -> str:
	return SourceFormatter().format(program)


# ---------------------------------------------------------------------------
# Compilation pipeline


@dataclass
class CompilationArtifacts:
	tokens: List[Token]
	ast: Optional[ProgramNode]
	symbols: SymbolTable
	diagnostics: List[Diagnostic]
	duration_ms: float

	@property
	def has_errors(self) -> bool:
		return any(d.severity == Severity.ERROR for d in self.diagnostics)


class BlueprintCompilerEngine:
	def compile(self, source: str) -> CompilationArtifacts:
		diagnostics = DiagnosticEngine()
		start = time.perf_counter()
		tokens: List[Token] = []
		ast: Optional[ProgramNode] = None
		symbols = SymbolTable()
		parser: Optional[Parser] = None
		try:
			tokens = Lexer(source).tokenize()
			parser = Parser(tokens)
			ast = parser.parse_program()
			symbols = SymbolTableBuilder(diagnostics).build(ast)
		except LanguageError as error:
			diagnostics.report(Severity.ERROR, error.message, error.line, hint=error.hint, kind=error.kind)
		except RecursionError:
			ast = None
			line = parser.line if parser is not None else None
			diagnostics.report(Severity.ERROR, "Program nests too deeply to compile", line, kind=ErrorKind.RECURSION_LIMIT)
		duration_ms = (time.perf_counter() - start) * 1000
		logger.debug("Compiled %d tokens with %d diagnostics in %.2f ms", len(tokens), len(diagnostics.items), duration_ms)
		return CompilationArtifacts(tokens=tokens, ast=ast, symbols=symbols, diagnostics=diagnostics.items, duration_ms=duration_ms)
