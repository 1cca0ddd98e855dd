"""Definitions table: the public entry point of the compilation pipeline."""

import logging
from typing import Iterable, List

from quarry.quarry_ast import QuarryASTDef, QuarryASTNode
from quarry.quarry_error import QuarryCompileError
from quarry.quarry_filter import QuarryFilter, QuarryNative
from quarry.quarry_lir import QuarryLir
from quarry.quarry_mir import QuarryMir
from quarry.quarry_natives import QuarryNatives


class QuarryDefinitions:
    """
    Collects natives and definitions, then compiles a main filter against them.

    Insertion order is significant: every insertion is visible only to what is
    inserted or finished after it.  A table compiles exactly one main filter;
    finish() consumes it.
    """

    def __init__(self, global_vars: List[str] | None = None) -> None:
        """
        Initialize definitions table.

        Args:
            global_vars: Names (without `$`) of variables bound by the caller
                and visible to every definition and the main filter
        """
        self._logger = logging.getLogger("QuarryDefinitions")
        self._mir = QuarryMir(global_vars)
        self._finished = False

    def insert_native(self, native: QuarryNative) -> None:
        """Register a native filter."""
        self._check_open()
        self._mir.insert_native(native)

    def insert_natives(self, natives: Iterable[QuarryNative]) -> None:
        """Register natives in order."""
        for native in natives:
            self.insert_native(native)

    def insert_core(self) -> None:
        """Register the built-in natives."""
        natives = QuarryNatives().get_natives()
        self.insert_natives(natives)
        self._logger.debug("Registered %d core natives", len(natives))

    def insert_definitions(self, definitions: Iterable[QuarryASTDef], errs: List[QuarryCompileError]) -> None:
        """
        Register parsed definitions in order.

        Args:
            definitions: Parsed `def` items
            errs: Collection that resolution errors are appended to
        """
        self._check_open()
        for definition in definitions:
            self._mir.insert_definition(definition, errs)

    def finish(self, body: QuarryASTNode, errs: List[QuarryCompileError]) -> QuarryFilter:
        """
        Compile the main filter.

        Args:
            body: Parsed main filter
            errs: Collection that resolution and lowering errors are appended to;
                it may already hold errors from earlier insertions

        Returns:
            The compiled filter, or the identity filter if errs is non-empty
        """
        self._check_open()
        self._finished = True

        self._mir.finish(body, errs)
        if errs:
            self._logger.warning("Compilation failed with %d error(s)", len(errs))
            return QuarryFilter.identity()

        compiled = QuarryLir(errs).lower(self._mir)
        if errs:
            self._logger.warning("Lowering failed with %d error(s)", len(errs))
            return QuarryFilter.identity()

        return compiled

    def _check_open(self) -> None:
        if self._finished:
            raise RuntimeError("QuarryDefinitions.finish() has already been called")
