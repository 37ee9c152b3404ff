#!/usr/bin/env python3
"""Command-line runner for blueprint programs."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from blueprint_compiler import BlueprintCompilerEngine, LanguageError, format_ast, format_error
from webapp.interpreter import Interpreter


def build_arg_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="blueprint", description="Run a blueprint language program")
	parser.add_argument("file", help="Path to the program source")
	parser.add_argument("--ast", action="store_true", help="Print the syntax tree before running")
	parser.add_argument("--tokens", action="store_true", help="Print the token list before running")
	parser.add_argument("--max-steps", type=int, default=None, help="Abort after this many evaluation steps")
	parser.add_argument("--verbose", action="store_true", help="Log interpreter activity to stderr")
	return parser


def main(argv: Optional[List[str]] = None) -> int:
	args = build_arg_parser().parse_args(argv)
	if args.verbose:
		logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")

	try:
		source = Path(args.file).read_text(encoding="utf-8")
	except OSError:
		print(f"Error opening file: {args.file}", file=sys.stderr)
		return 1

	engine = BlueprintCompilerEngine()
	artifacts = engine.compile(source)
	for diagnostic in artifacts.diagnostics:
		label = diagnostic.kind.value if diagnostic.kind is not None else diagnostic.severity.name
		print(f"[{label}] line {diagnostic.line}: {diagnostic.message}", file=sys.stderr)
		if diagnostic.hint:
			print(f"  hint: {diagnostic.hint}", file=sys.stderr)
	if artifacts.has_errors or artifacts.ast is None:
		return 1

	if args.tokens:
		for token in artifacts.tokens:
			print(f"{token.line:>4}  {token.kind.name:<20} {token.lexeme}")
	if args.ast:
		print("AST:")
		print(format_ast(artifacts.ast))
		print("\nExecution:")

	interpreter = Interpreter(stdin=sys.stdin, stdout=sys.stdout, max_steps=args.max_steps)
	try:
		interpreter.execute(artifacts.ast, artifacts.symbols)
	except LanguageError as error:
		sys.stdout.flush()
		print(format_error(error), file=sys.stderr)
		return 1
	return 0


if __name__ == "__main__":
	sys.exit(main())
