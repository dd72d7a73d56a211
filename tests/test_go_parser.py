import os
import tempfile
import textwrap
import unittest

import cvet

SOURCE = textwrap.dedent(
    """\
    package svc

    import "context"

    // Service handles submissions.
    type Service struct{}

    func (s *Service) SubmitCommand(ctx context.Context, a, b int, rest ...string) (code int, err error) {
    	logger := slog.With(slog.String("command", "SubmitCommand"))
    	total := a + b
    	if total > 0 {
    		logger.Info(`raw`)
    	} else if total < 0 {
    		return 1, nil
    	} else {
    		total = 0
    	}
    	return 0, nil
    }

    func external() error
    """
)


class GoParserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tree = cvet.parse_go_source(SOURCE, "svc.go")
        self.fn = next(d for d in self.tree.declarations if isinstance(d, cvet.FunctionDeclaration))

    def test_file_level(self) -> None:
        self.assertEqual(self.tree.package, "svc")
        self.assertEqual(self.tree.path, "svc.go")
        syntaxes = [d.syntax for d in self.tree.declarations if isinstance(d, cvet.OtherDeclaration)]
        self.assertEqual(syntaxes, ["import_declaration", "type_declaration"])

    def test_method_signature(self) -> None:
        fn = self.fn
        self.assertEqual(fn.name, "SubmitCommand")
        self.assertEqual(fn.position, cvet.Position("svc.go", 8, 1))
        self.assertEqual(fn.receiver.name, "s")
        self.assertEqual([p.name for p in fn.parameters], ["ctx", "a", "b", "rest"])
        self.assertTrue(cvet.is_selector(fn.parameters[0].type, "context", "Context"))
        self.assertTrue(cvet.is_identifier(fn.parameters[1].type, "int"))
        # grouped names get distinct type nodes
        self.assertIsNot(fn.parameters[1].type, fn.parameters[2].type)
        self.assertEqual(fn.parameters[3].type.syntax, "variadic_type")
        self.assertEqual([r.name for r in fn.results], ["code", "err"])
        self.assertTrue(cvet.is_identifier(fn.results[1].type, "error"))

    def test_logger_assignment(self) -> None:
        first = self.fn.body.statements[0]
        self.assertIsInstance(first, cvet.AssignmentStatement)
        self.assertTrue(first.define)
        self.assertTrue(cvet.is_identifier(first.targets[0], "logger"))
        builder = first.values[0]
        self.assertTrue(cvet.is_selector(builder.function, "slog", "With"))
        field_call = builder.arguments[0]
        self.assertEqual([a.value for a in field_call.arguments], ["command", "SubmitCommand"])

    def test_if_chain(self) -> None:
        if_stmt = self.fn.body.statements[2]
        self.assertIsInstance(if_stmt, cvet.IfStatement)
        raw = cvet.call_of(if_stmt.body.statements[0]).arguments[0]
        self.assertIsInstance(raw, cvet.StringLiteral)
        self.assertEqual(raw.value, "raw")
        self.assertIsInstance(if_stmt.orelse, cvet.IfStatement)
        self.assertIsInstance(if_stmt.orelse.body.statements[0], cvet.ReturnStatement)
        self.assertIsInstance(if_stmt.orelse.orelse, cvet.BlockStatement)
        assignment = if_stmt.orelse.orelse.statements[0]
        self.assertFalse(assignment.define)
        self.assertEqual(assignment.operator, "=")

    def test_bodiless_function(self) -> None:
        external = [d for d in self.tree.declarations if isinstance(d, cvet.FunctionDeclaration)][-1]
        self.assertEqual(external.name, "external")
        self.assertIsNone(external.body)
        self.assertEqual(len(external.results), 1)

    def test_syntax_error(self) -> None:
        with self.assertRaises(cvet.SourceParseError) as ctx:
            cvet.parse_go_source("package svc\n\nfunc broken( {\n", "broken.go")
        self.assertEqual(ctx.exception.path, "broken.go")
        self.assertIsNotNone(ctx.exception.position)
        self.assertIn("syntax error", str(ctx.exception))

    def test_missing_file(self) -> None:
        with self.assertRaises(cvet.SourceParseError):
            cvet.parse_go_file(os.path.join(tempfile.gettempdir(), "cvet-does-not-exist.go"))


class IdempotenceTests(unittest.TestCase):
    def test_repeated_runs_match(self) -> None:
        source = (
            "package svc\n\n"
            "func SubmitCommand(id string, c context.Context) error {\n"
            "\tlog.Println(id)\n"
            "\tlogger.Info(\"x\")\n"
            "\tpanic(id)\n"
            "}\n"
        )
        tree = cvet.parse_go_source(source, "svc.go")
        first = cvet.run([tree]).diagnostics
        second = cvet.run([cvet.parse_go_source(source, "svc.go")]).diagnostics
        self.assertTrue(first)
        self.assertEqual(first, second)
        self.assertEqual(
            {d.rule for d in first},
            {
                "function-shape-command",
                "logging-convention",
                "context-parameter",
                "log-usage",
                "log-before-panic",
            },
        )


if __name__ == "__main__":
    unittest.main()
