from __future__ import annotations

from dataclasses import is_dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from blueprint_compiler import BlueprintCompilerEngine, CompilationArtifacts, Diagnostic, LanguageError, format_ast
from webapp.interpreter import Interpreter, Value


app = FastAPI(title="Blueprint Language Compiler", version="1.0.0")

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


class CompileRequest(BaseModel):
	source: str


class RunRequest(BaseModel):
	source: str
	stdin: str = ""
	max_steps: int = 50_000
	max_call_depth: int = 100


AST_JSON_MAX_DEPTH = 200


def _to_json(obj: Any, *, depth: int = 0, max_depth: int = AST_JSON_MAX_DEPTH) -> Any:
	"""Best-effort conversion of compiler artifacts to JSON-safe structures."""
	if depth > max_depth:
		return {"_truncated": True}
	if obj is None:
		return None
	if isinstance(obj, (str, int, float, bool)):
		return obj
	if isinstance(obj, (list, tuple)):
		return [_to_json(x, depth=depth + 1, max_depth=max_depth) for x in obj]
	if isinstance(obj, dict):
		return {str(k): _to_json(v, depth=depth + 1, max_depth=max_depth) for k, v in obj.items()}
	if isinstance(obj, Value):
		return obj.to_python()
	if is_dataclass(obj):
		data: Dict[str, Any] = {"_type": obj.__class__.__name__}
		for k, v in obj.__dict__.items():
			data[k] = _to_json(v, depth=depth + 1, max_depth=max_depth)
		return data
	if isinstance(obj, Enum):
		return obj.name
	return str(obj)


def _is_truncated(data: Any) -> bool:
	pending = [data]
	while pending:
		item = pending.pop()
		if isinstance(item, dict):
			if item.get("_truncated"):
				return True
			pending.extend(item.values())
		elif isinstance(item, list):
			pending.extend(item)
	return False


def _diagnostic_json(d: Diagnostic) -> Dict[str, Any]:
	return {
		"severity": d.severity.name,
		"kind": d.kind.value if d.kind is not None else None,
		"message": d.message,
		"hint": d.hint,
		"line": d.line,
	}


def _error_json(error: Optional[LanguageError]) -> Optional[Dict[str, Any]]:
	if error is None:
		return None
	return {"kind": error.kind.value, "message": error.message, "line": error.line}


def _compile_payload(art: CompilationArtifacts) -> Dict[str, Any]:
	ast_json = _to_json(art.ast)
	return {
		"duration_ms": art.duration_ms,
		"token_count": len(art.tokens),
		"diagnostic_count": len(art.diagnostics),
		"has_ast": art.ast is not None,
		"diagnostics": [_diagnostic_json(d) for d in art.diagnostics],
		"tokens": [
			{"kind": t.kind.name, "lexeme": t.lexeme, "line": t.line}
			for t in art.tokens
			if t.kind.name != "EOF"
		],
		"ast": ast_json,
		"ast_truncated": _is_truncated(ast_json),
		"ast_text": format_ast(art.ast) if art.ast is not None else None,
		"symbols": {
			"functions": sorted(art.symbols.functions),
			"blueprints": sorted(art.symbols.blueprints),
		},
	}


@app.get("/", response_class=HTMLResponse)
def index() -> HTMLResponse:
	return HTMLResponse(
		"<h2>Blueprint Language Compiler API</h2>"
		"<p>POST <code>/api/compile</code> with JSON: <code>{\"source\": \"...\"}</code></p>"
		"<p>POST <code>/api/run</code> with JSON: <code>{\"source\": \"...\", \"stdin\": \"...\"}</code></p>"
	)


@app.get("/health")
def health() -> Dict[str, str]:
	return {"status": "ok"}


@app.post("/api/compile")
def compile_source(req: CompileRequest) -> Dict[str, Any]:
	engine = BlueprintCompilerEngine()
	return _compile_payload(engine.compile(req.source))


@app.post("/api/run")
def run_source(req: RunRequest) -> Dict[str, Any]:
	engine = BlueprintCompilerEngine()
	art = engine.compile(req.source)
	payload = _compile_payload(art)

	output = ""
	steps = 0
	result: Any = None
	runtime_error: Optional[Dict[str, Any]] = None
	if not art.has_errors and art.ast is not None:
		interp = Interpreter(stdin=req.stdin or "", max_steps=req.max_steps or 50_000, max_call_depth=req.max_call_depth)
		run_art = interp.run(art.ast, art.symbols)
		output = run_art.output
		steps = run_art.steps
		result = run_art.result.to_python() if run_art.result is not None else None
		runtime_error = _error_json(run_art.runtime_error)

	payload["run"] = {
		"output": output,
		"steps": steps,
		"result": result,
		"runtime_error": runtime_error,
	}
	return payload

