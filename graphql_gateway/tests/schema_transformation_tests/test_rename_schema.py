# Copyright 2021-present Kensho Technologies, LLC.
from textwrap import dedent
import unittest

from graphql import parse
from graphql.language.printer import print_ast

from ...exceptions import SchemaCompositionError
from ...schema_transformation.rename_schema import rename_schema
from ...schema_transformation.utils import (
    InvalidNameError,
    NoOpRenamingError,
    SchemaRenameNameConflictError,
    SchemaStructureError,
    SchemaTransformError,
)
from ..test_helpers import compare_schema_texts_order_independently
from .input_schema_strings import InputSchemaStrings as ISS


class TestRenameSchema(unittest.TestCase):
    def test_no_rename(self) -> None:
        renamed_schema = rename_schema(parse(ISS.basic_schema), {}, {})

        compare_schema_texts_order_independently(
            self, ISS.basic_schema, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual({}, renamed_schema.reverse_name_map)
        self.assertEqual({}, renamed_schema.reverse_field_name_map)

    def test_basic_rename(self) -> None:
        renamed_schema = rename_schema(parse(ISS.basic_schema), {"State": "NewState"}, {})
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            directive @sourcedFrom(backend: String!, field: String!) on FIELD_DEFINITION

            type NewState {
              id: String
            }

            type RootQuery {
              State: NewState
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual({"NewState": "State"}, renamed_schema.reverse_name_map)
        self.assertEqual({}, renamed_schema.reverse_field_name_map)
        self.assertIsNotNone(renamed_schema.schema.get_type("NewState"))
        self.assertIsNone(renamed_schema.schema.get_type("State"))

    def test_original_ast_not_modified(self) -> None:
        original_ast = parse(ISS.basic_schema)
        original_text = print_ast(original_ast)
        rename_schema(original_ast, {"State": "NewState"}, {"RootQuery": {"State": "NewField"}})
        self.assertEqual(original_text, print_ast(original_ast))

    def test_enum_rename(self) -> None:
        renamed_schema = rename_schema(parse(ISS.enum_schema), {"Phase": "NewPhase"}, {})
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            type County {
              phase: NewPhase
            }

            type RootQuery {
              County: County
            }

            enum NewPhase {
              OPEN
              CLOSED
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual({"NewPhase": "Phase"}, renamed_schema.reverse_name_map)

    def test_union_rename(self) -> None:
        renamed_schema = rename_schema(
            parse(ISS.union_schema), {"StateOrCounty": "Region", "State": "NewState"}, {}
        )
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            type NewState {
              id: String
            }

            type County {
              id: String
            }

            union Region = NewState | County

            type RootQuery {
              State: NewState
              County: County
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual(
            {"Region": "StateOrCounty", "NewState": "State"}, renamed_schema.reverse_name_map
        )

    def test_input_type_rename(self) -> None:
        renamed_schema = rename_schema(
            parse(ISS.input_schema), {"StateFilter": "NewStateFilter"}, {}
        )
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            type State {
              id: String
            }

            input NewStateFilter {
              id: String
            }

            type RootQuery {
              State(filter: NewStateFilter): State
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual({"NewStateFilter": "StateFilter"}, renamed_schema.reverse_name_map)

    def test_scalar_rename(self) -> None:
        renamed_schema = rename_schema(parse(ISS.scalar_schema), {"Date": "NewDate"}, {})
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            scalar NewDate

            type State {
              founded: NewDate
            }

            type RootQuery {
              State: State
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual({"NewDate": "Date"}, renamed_schema.reverse_name_map)

    def test_root_field_rename(self) -> None:
        renamed_schema = rename_schema(
            parse(ISS.basic_schema), {}, {"RootQuery": {"State": "states"}}
        )
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            directive @sourcedFrom(backend: String!, field: String!) on FIELD_DEFINITION

            type State {
              id: String
            }

            type RootQuery {
              states: State
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual({}, renamed_schema.reverse_name_map)
        self.assertEqual(
            {"RootQuery": {"states": "State"}}, renamed_schema.reverse_field_name_map
        )

    def test_field_rename_keyed_by_original_type_name(self) -> None:
        renamed_schema = rename_schema(
            parse(ISS.basic_schema), {"State": "NewState"}, {"State": {"id": "stateId"}}
        )
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            directive @sourcedFrom(backend: String!, field: String!) on FIELD_DEFINITION

            type NewState {
              stateId: String
            }

            type RootQuery {
              State: NewState
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual({"State": {"stateId": "id"}}, renamed_schema.reverse_field_name_map)

    def test_mutation_rename(self) -> None:
        renamed_schema = rename_schema(
            parse(ISS.mutation_schema),
            {"State": "NewState"},
            {"RootMutation": {"addState": "createState"}},
        )
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
              mutation: RootMutation
            }

            type NewState {
              id: String
            }

            type RootQuery {
              State: NewState
            }

            type RootMutation {
              createState(id: String): NewState
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )
        self.assertEqual(
            {"RootMutation": {"createState": "addState"}},
            renamed_schema.reverse_field_name_map,
        )

    def test_root_type_not_renamed(self) -> None:
        with self.assertRaises(NoOpRenamingError):
            rename_schema(parse(ISS.basic_schema), {"RootQuery": "NewQuery"}, {})

    def test_builtin_scalar_rename(self) -> None:
        with self.assertRaises(InvalidNameError):
            rename_schema(parse(ISS.basic_schema), {"String": "Text"}, {})

    def test_invalid_type_names(self) -> None:
        for invalid_name in ("0State", "State-Being", "__State", ""):
            with self.assertRaises(InvalidNameError):
                rename_schema(parse(ISS.basic_schema), {"State": invalid_name}, {})

    def test_invalid_field_names(self) -> None:
        for invalid_name in ("0id", "__id"):
            with self.assertRaises(InvalidNameError):
                rename_schema(parse(ISS.basic_schema), {}, {"State": {"id": invalid_name}})

    def test_type_rename_to_existing_type(self) -> None:
        with self.assertRaises(SchemaRenameNameConflictError) as context:
            rename_schema(parse(ISS.multiple_objects_schema), {"State": "County"}, {})
        self.assertEqual(
            {"County": {"State", "County"}}, context.exception.type_name_conflicts
        )

    def test_two_types_renamed_to_same_name(self) -> None:
        with self.assertRaises(SchemaRenameNameConflictError) as context:
            rename_schema(
                parse(ISS.multiple_objects_schema), {"State": "Region", "Clinic": "Region"}, {}
            )
        self.assertEqual(
            {"Region": {"State", "Clinic"}}, context.exception.type_name_conflicts
        )
        self.assertIn('would all be renamed to "Region"', str(context.exception))

    def test_type_rename_to_builtin_scalar_name(self) -> None:
        with self.assertRaises(SchemaRenameNameConflictError):
            rename_schema(parse(ISS.basic_schema), {"State": "String"}, {})

    def test_field_rename_to_existing_field(self) -> None:
        with self.assertRaises(SchemaRenameNameConflictError) as context:
            rename_schema(parse(ISS.same_field_schema), {}, {"County": {"id": "name"}})
        self.assertEqual(
            {"County": {"name": {"id", "name"}}}, context.exception.field_name_conflicts
        )

    def test_swap_field_names(self) -> None:
        renamed_schema = rename_schema(
            parse(ISS.same_field_schema), {}, {"County": {"id": "name", "name": "id"}}
        )
        self.assertEqual(
            {"County": {"name": "id", "id": "name"}}, renamed_schema.reverse_field_name_map
        )

    def test_no_op_type_renamings(self) -> None:
        with self.assertRaises(NoOpRenamingError) as context:
            rename_schema(parse(ISS.basic_schema), {"State": "State", "Nonexistent": "Foo"}, {})
        self.assertEqual({"State", "Nonexistent"}, context.exception.no_op_type_renames)

    def test_no_op_field_renamings(self) -> None:
        with self.assertRaises(NoOpRenamingError) as context:
            rename_schema(
                parse(ISS.basic_schema),
                {},
                {"State": {"id": "id", "nonexistent": "foo"}, "Nonexistent": {"a": "b"}},
            )
        self.assertEqual(
            {"State": {"id", "nonexistent"}, "Nonexistent": {"a"}},
            context.exception.no_op_field_renames,
        )

    def test_field_renaming_on_interface_implementation(self) -> None:
        with self.assertRaises(NotImplementedError):
            rename_schema(parse(ISS.interface_schema), {}, {"Site": {"id": "siteId"}})

    def test_field_renaming_on_interface(self) -> None:
        with self.assertRaises(NotImplementedError):
            rename_schema(parse(ISS.interface_schema), {}, {"Location": {"id": "locationId"}})

    def test_interface_type_rename(self) -> None:
        renamed_schema = rename_schema(
            parse(ISS.interface_schema), {"Location": "NewLocation"}, {}
        )
        renamed_schema_string = dedent(
            """\
            schema {
              query: RootQuery
            }

            interface NewLocation {
              id: String
            }

            type Site implements NewLocation {
              id: String
            }

            type RootQuery {
              Location: NewLocation
              Site: Site
            }
        """
        )
        compare_schema_texts_order_independently(
            self, renamed_schema_string, print_ast(renamed_schema.schema_ast)
        )

    def test_subscription_schema(self) -> None:
        with self.assertRaises(SchemaStructureError):
            rename_schema(parse(ISS.subscription_schema), {}, {})

    def test_invalid_input_schema(self) -> None:
        with self.assertRaises(SchemaStructureError):
            rename_schema(parse("type Query { state: Missing }"), {}, {})

    def test_errors_are_composition_errors(self) -> None:
        self.assertTrue(issubclass(SchemaTransformError, SchemaCompositionError))
        with self.assertRaises(SchemaCompositionError):
            rename_schema(parse(ISS.basic_schema), {"State": "0State"}, {})
