import unittest

from blueprint_compiler import ErrorKind, LexError, Lexer, TokenKind


def kinds(source):
	return [t.kind for t in Lexer(source).tokenize()]


class TestLexer(unittest.TestCase):
	def test_declaration_tokens_and_comment(self):
		self.assertEqual(
			kinds("var x := 10; // trailing comment"),
			[TokenKind.VAR, TokenKind.IDENT, TokenKind.ASSIGN, TokenKind.NUMBER, TokenKind.SEMI, TokenKind.EOF],
		)

	def test_keywords_need_exact_match(self):
		tokens = Lexer("blueprint blueprints check_if else_when otherwise _tmp1").tokenize()
		self.assertEqual(
			[t.kind for t in tokens],
			[TokenKind.BLUEPRINT, TokenKind.IDENT, TokenKind.CHECK_IF, TokenKind.ELSE_WHEN, TokenKind.OTHERWISE, TokenKind.IDENT, TokenKind.EOF],
		)
		self.assertEqual(tokens[1].lexeme, "blueprints")

	def test_two_character_operators_munch_greedily(self):
		tokens = Lexer("<= < !< == && := > * /").tokenize()
		self.assertEqual(
			[t.lexeme for t in tokens[:-1]],
			["<=", "<", "!<", "==", "&&", ":=", ">", "*", "/"],
		)
		self.assertEqual(tokens[2].kind, TokenKind.NOT_LT)

	def test_lines_are_tracked(self):
		tokens = Lexer("var a := 1;\n\n// note\nlets_print {a};").tokenize()
		self.assertEqual(tokens[0].line, 1)
		print_token = next(t for t in tokens if t.kind == TokenKind.LETS_PRINT)
		self.assertEqual(print_token.line, 4)
		self.assertEqual(tokens[-1].kind, TokenKind.EOF)

	def test_string_literal_keeps_raw_text_across_lines(self):
		tokens = Lexer('"hello\\n\nworld" x').tokenize()
		self.assertEqual(tokens[0].kind, TokenKind.STRING)
		self.assertEqual(tokens[0].lexeme, "hello\\n\nworld")
		self.assertEqual(tokens[0].line, 1)
		self.assertEqual(tokens[1].line, 2)

	def test_unterminated_string(self):
		with self.assertRaises(LexError) as ctx:
			Lexer('lets_print {"oops};').tokenize()
		self.assertEqual(ctx.exception.kind, ErrorKind.UNTERMINATED_STRING)

	def test_unexpected_character_reports_line(self):
		with self.assertRaises(LexError) as ctx:
			Lexer("var a := 1;\nvar b := a @ 2;").tokenize()
		self.assertEqual(ctx.exception.kind, ErrorKind.UNEXPECTED_CHARACTER)
		self.assertEqual(ctx.exception.line, 2)
		self.assertIn("@", ctx.exception.message)

	def test_lone_equals_is_not_a_token(self):
		with self.assertRaises(LexError) as ctx:
			Lexer("x = 1;").tokenize()
		self.assertEqual(ctx.exception.kind, ErrorKind.UNEXPECTED_CHARACTER)


if __name__ == "__main__":
	unittest.main()
