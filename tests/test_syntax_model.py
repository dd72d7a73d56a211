import unittest

import cvet


def context_type() -> cvet.SelectorExpression:
    return cvet.SelectorExpression(operand=cvet.Identifier("context"), member="Context")


def call(name: str, *args: cvet.SyntaxNode) -> cvet.ExpressionStatement:
    return cvet.ExpressionStatement(
        expression=cvet.CallExpression(function=cvet.Identifier(name), arguments=list(args))
    )


class PredicateTests(unittest.TestCase):
    def test_identifier_and_selector_shapes(self) -> None:
        selector = context_type()
        self.assertTrue(cvet.is_selector(selector, "context", "Context"))
        self.assertFalse(cvet.is_selector(selector, "ctx", "Context"))
        self.assertFalse(cvet.is_selector(cvet.Identifier("Context"), "context", "Context"))
        self.assertTrue(cvet.is_identifier(cvet.Identifier("int"), "int"))
        self.assertFalse(cvet.is_identifier(selector, "int"))
        self.assertFalse(cvet.is_identifier(None, "int"))

    def test_type_matching(self) -> None:
        self.assertTrue(cvet.is_type(context_type(), "context.Context"))
        self.assertTrue(cvet.is_type(cvet.Identifier("error"), "error"))
        pointer = cvet.OtherExpression(syntax="pointer_type", items=[context_type()])
        self.assertFalse(cvet.is_type(pointer, "context.Context"))

    def test_call_helpers(self) -> None:
        stmt = cvet.ExpressionStatement(
            expression=cvet.CallExpression(
                function=cvet.SelectorExpression(operand=cvet.Identifier("logger"), member="Info")
            )
        )
        self.assertIs(cvet.call_of(stmt), stmt.expression)
        self.assertEqual(cvet.call_receiver(cvet.call_of(stmt)), "logger")
        self.assertIsNone(cvet.call_receiver(cvet.call_of(call("panic"))))
        self.assertIsNone(cvet.call_of(cvet.ReturnStatement()))

    def test_classification_is_derived_from_name(self) -> None:
        fn = cvet.FunctionDeclaration(name="SubmitCommand")
        self.assertTrue(cvet.is_command_function(fn))
        self.assertFalse(cvet.is_query_function(fn))

        fn.name = "ListItemsQuery"
        self.assertFalse(cvet.is_command_function(fn))
        self.assertTrue(cvet.is_query_function(fn))

        custom = cvet.Conventions(command_suffix="Cmd")
        fn.name = "SubmitCmd"
        self.assertTrue(cvet.is_command_function(fn, custom))
        self.assertFalse(cvet.is_command_function(fn))


class IterNodesTests(unittest.TestCase):
    def build_function(self) -> cvet.FunctionDeclaration:
        body = cvet.BlockStatement(
            statements=[
                call("f", cvet.Identifier("x")),
                cvet.IfStatement(
                    condition=cvet.Identifier("ready"),
                    body=cvet.BlockStatement(statements=[call("g")]),
                    orelse=cvet.BlockStatement(statements=[call("h")]),
                ),
            ]
        )
        return cvet.FunctionDeclaration(
            name="Run",
            parameters=[cvet.Parameter(name="ctx", type=context_type())],
            body=body,
        )

    def test_depth_first_source_order(self) -> None:
        kinds = [node.kind for node in cvet.iter_nodes(self.build_function())]
        self.assertEqual(
            kinds,
            [
                "function", "parameter", "selector", "identifier",
                "block", "expression_statement", "call", "identifier", "identifier",
                "if", "identifier",
                "block", "expression_statement", "call", "identifier",
                "block", "expression_statement", "call", "identifier",
            ],
        )

    def test_every_node_visited_once(self) -> None:
        nodes = list(cvet.iter_nodes(self.build_function()))
        self.assertEqual(len(nodes), len({id(node) for node in nodes}))

    def test_called_names_follow_branches(self) -> None:
        names = [
            node.function.name
            for node in cvet.iter_nodes(self.build_function())
            if isinstance(node, cvet.CallExpression)
        ]
        self.assertEqual(names, ["f", "g", "h"])


if __name__ == "__main__":
    unittest.main()
