import unittest

from blueprint_compiler import (
	AssignmentStatement,
	BinaryExpression,
	BlueprintCompilerEngine,
	BlueprintDecl,
	BooleanLiteral,
	CallExpression,
	ErrorKind,
	FunctionDecl,
	Identifier,
	IfStatement,
	InputExpression,
	InstanceDecl,
	LanguageError,
	LetConstDecl,
	Lexer,
	NumberLiteral,
	ParseError,
	Parser,
	PrintStatement,
	Severity,
	StringLiteral,
	SymbolTableBuilder,
	VarDecl,
	WhileStatement,
	YieldStatement,
)


def parse(source):
	return Parser(Lexer(source).tokenize()).parse_program()


def parse_expr(text):
	return parse(f"lets_print {{{text}}};").statements[0].expression


class TestStatements(unittest.TestCase):
	def test_declarations(self):
		program = parse('var a := "x";\ninteger n := 3;\nlet l := 1;\nconst c := true;')
		var_decl, int_decl, let_decl, const_decl = program.statements
		self.assertEqual(var_decl, VarDecl(line=0, decl_kind="var", name="a", initializer=StringLiteral(line=0, value="x")))
		self.assertEqual(int_decl.decl_kind, "integer")
		self.assertEqual(int_decl.line, 2)
		self.assertIsInstance(let_decl, LetConstDecl)
		self.assertFalse(let_decl.is_const)
		self.assertTrue(const_decl.is_const)
		self.assertEqual(const_decl.initializer, BooleanLiteral(line=0, value=True))

	def test_identifier_statement_forms(self):
		program = parse("x := 1;\np.greet(\"Bo\", 2);\nrun();\nx;\ny")
		assign, method, call, bare, bare_no_semi = program.statements
		self.assertEqual(assign, AssignmentStatement(line=0, name="x", value=NumberLiteral(line=0, value=1)))
		self.assertIsInstance(method, CallExpression)
		self.assertEqual(method.receiver, "p")
		self.assertEqual(method.name, "greet")
		self.assertEqual(method.qualified_name, "p.greet")
		self.assertEqual(len(method.arguments), 2)
		self.assertEqual(call, CallExpression(line=0, name="run", arguments=[]))
		self.assertEqual(bare, Identifier(line=0, name="x"))
		self.assertEqual(bare_no_semi, Identifier(line=0, name="y"))

	def test_if_with_else_when_arms_and_otherwise(self):
		program = parse(
			"check_if (a) { lets_print {1}; }\n"
			"else_when (b) { lets_print {2}; }\n"
			"else_when (c) { }\n"
			"otherwise { lets_print {3}; }"
		)
		node = program.statements[0]
		self.assertIsInstance(node, IfStatement)
		self.assertEqual(node.condition, Identifier(line=0, name="a"))
		self.assertEqual(len(node.then_block.statements), 1)
		self.assertEqual([cond.name for cond, _block in node.else_ifs], ["b", "c"])
		self.assertEqual(node.else_ifs[1][1].statements, [])
		self.assertIsInstance(node.else_block.statements[0], PrintStatement)

	def test_plain_if_keyword_without_else(self):
		node = parse("if (1) { x := 2; }").statements[0]
		self.assertIsInstance(node, IfStatement)
		self.assertEqual(node.else_ifs, [])
		self.assertIsNone(node.else_block)

	def test_while_function_yield_instance(self):
		program = parse(
			"define add(a, b) { yield a + b; }\n"
			"repeat_while (i <= 3) { i := i + 1; }\n"
			"instance Person p;"
		)
		function, loop, instance = program.statements
		self.assertIsInstance(function, FunctionDecl)
		self.assertEqual(function.parameters, ["a", "b"])
		self.assertIsInstance(function.body[0], YieldStatement)
		self.assertIsInstance(loop, WhileStatement)
		self.assertEqual(loop.line, 2)
		self.assertEqual(instance, InstanceDecl(line=0, blueprint_name="Person", instance_name="p"))

	def test_blueprint_nests_functions_and_blueprints(self):
		node = parse("blueprint Outer { define a() { } blueprint Inner { define b(x) { } } }").statements[0]
		self.assertIsInstance(node, BlueprintDecl)
		self.assertEqual([type(member) for member in node.body], [FunctionDecl, BlueprintDecl])
		self.assertEqual(node.body[1].body[0].parameters, ["x"])

	def test_input_statement_and_expression(self):
		program = parse("scanning_user_input {integer};\nvar name := scanning_user_input {text};")
		self.assertEqual(program.statements[0], InputExpression(line=0, input_type="integer"))
		self.assertEqual(program.statements[1].initializer, InputExpression(line=0, input_type="text"))

	def test_print_semicolon_is_optional(self):
		program = parse("lets_print {1}\nlets_print {2};")
		self.assertEqual(len(program.statements), 2)


class TestExpressions(unittest.TestCase):
	def test_chain_is_flat_and_left_associative(self):
		expr = parse_expr("1 < 2 + 3")
		self.assertEqual(expr.operator, "+")
		self.assertEqual(expr.left, BinaryExpression(line=0, operator="<", left=NumberLiteral(line=0, value=1), right=NumberLiteral(line=0, value=2)))

	def test_multiplication_binds_tighter(self):
		expr = parse_expr("1 + 2 * 3")
		self.assertEqual(expr.operator, "+")
		self.assertEqual(expr.right.operator, "*")

	def test_logical_and_binds_loosest(self):
		expr = parse_expr("a == 1 && b !< 2")
		self.assertEqual(expr.operator, "&&")
		self.assertEqual(expr.left.operator, "==")
		self.assertEqual(expr.right.operator, "!<")

	def test_parentheses_group(self):
		expr = parse_expr("(1 + 2) * 3")
		self.assertEqual(expr.operator, "*")
		self.assertEqual(expr.left.operator, "+")

	def test_calls_inside_expressions(self):
		expr = parse_expr('p.greet("Bo") + f(1, g())')
		self.assertEqual(expr.left.qualified_name, "p.greet")
		self.assertEqual(expr.right.name, "f")
		self.assertEqual(expr.right.arguments[1], CallExpression(line=0, name="g", arguments=[]))


class TestSyntaxErrors(unittest.TestCase):
	def test_missing_semicolon(self):
		with self.assertRaises(ParseError) as ctx:
			parse("var a := 1\nvar b := 2;")
		error = ctx.exception
		self.assertEqual(error.kind, ErrorKind.SYNTAX)
		self.assertEqual(error.expected, "';'")
		self.assertEqual(error.found, "var")
		self.assertEqual(error.line, 2)
		self.assertIsNotNone(error.hint)

	def test_missing_expression(self):
		with self.assertRaises(ParseError) as ctx:
			parse("var a := ;")
		self.assertEqual(ctx.exception.expected, "expression")
		self.assertIn("Unexpected token", ctx.exception.message)

	def test_blueprint_body_only_allows_definitions(self):
		with self.assertRaises(ParseError) as ctx:
			parse("blueprint P {\n var x := 1;\n}")
		self.assertIn("Expected function or blueprint definition in blueprint", ctx.exception.message)
		self.assertEqual(ctx.exception.line, 2)

	def test_unclosed_block_reports_end_of_input(self):
		with self.assertRaises(ParseError) as ctx:
			parse("repeat_while (1) { lets_print {1};")
		self.assertEqual(ctx.exception.found, "end of input")
		self.assertEqual(ctx.exception.expected, "'}'")

	def test_reserved_word_as_name_gets_hint(self):
		with self.assertRaises(ParseError) as ctx:
			parse("var yield := 1;")
		self.assertIn("reserved word", ctx.exception.hint)



class TestNesting(unittest.TestCase):
	def test_parentheses_within_limit(self):
		expr = parse_expr("(" * 50 + "1" + ")" * 50)
		self.assertEqual(expr, NumberLiteral(line=0, value=1))

	def test_deep_parentheses_are_rejected(self):
		with self.assertRaises(LanguageError) as ctx:
			parse_expr("(" * 400 + "1" + ")" * 400)
		self.assertEqual(ctx.exception.kind, ErrorKind.RECURSION_LIMIT)
		self.assertEqual(ctx.exception.line, 1)

	def test_deep_blocks_report_offending_line(self):
		with self.assertRaises(LanguageError) as ctx:
			parse("check_if (1) {\n" * 150 + "}\n" * 150)
		self.assertEqual(ctx.exception.kind, ErrorKind.RECURSION_LIMIT)
		self.assertEqual(ctx.exception.line, 101)

	def test_engine_turns_deep_nesting_into_a_diagnostic(self):
		art = BlueprintCompilerEngine().compile("lets_print {" + "(" * 400 + "1" + ")" * 400 + "};")
		self.assertTrue(art.has_errors)
		self.assertIsNone(art.ast)
		self.assertEqual(art.diagnostics[0].kind, ErrorKind.RECURSION_LIMIT)
		self.assertEqual(art.diagnostics[0].line, 1)

	def test_long_chain_parses_flat(self):
		art = BlueprintCompilerEngine().compile("lets_print {" + " + ".join(["1"] * 2000) + "};")
		self.assertFalse(art.has_errors)


class TestSymbolTable(unittest.TestCase):
	def test_qualified_names(self):
		program = parse(
			"blueprint Outer {\n"
			"  blueprint Inner { define name() { yield 1; } }\n"
			"  define make() { }\n"
			"}\n"
			"define helper() { }\n"
			"check_if (1) { define late() { } }"
		)
		table = SymbolTableBuilder().build(program)
		self.assertEqual(sorted(table.blueprints), ["Outer", "Outer.Inner"])
		self.assertEqual(sorted(table.functions), ["Outer.Inner.name", "Outer.make", "helper", "late"])

	def test_engine_warns_on_duplicate_and_reports_syntax_errors(self):
		engine = BlueprintCompilerEngine()
		art = engine.compile("define f() { yield 1; }\ndefine f() { yield 2; }")
		self.assertFalse(art.has_errors)
		self.assertEqual([d.severity for d in art.diagnostics], [Severity.WARNING])
		self.assertEqual(art.symbols.functions["f"].line, 2)

		broken = engine.compile("lets_print {1")
		self.assertTrue(broken.has_errors)
		self.assertIsNone(broken.ast)
		self.assertEqual(broken.diagnostics[0].kind, ErrorKind.SYNTAX)


if __name__ == "__main__":
	unittest.main()
