"""
Program state model and pipeline helper

Defines ProgramState dataclass for the functional pipeline pattern used by
the command line entry point, and the pipeline() helper for composing
transformation stages.
"""

from pathlib import Path
from argparse import Namespace
from typing import Any, Optional, Type, TypeVar, Dict, Callable
from dataclasses import dataclass, field
import dataclasses


PS = TypeVar("PS", bound="ProgramState")


@dataclass
class ProgramState:
    """
    Central state container for the CLI pipeline (state bus pattern).

    Pipeline stages and their state additions:
        - Initial: inputdir, outputdir, verbosity, inputFile, aliasFile, outputFile
        - env_check: inputSourceFile, aliasSourceFile, envOK
        - document_read: document, aliasTable
        - document_parse: parseResult, unexpandedBlocks
        - results_write: writeResult
        - results_report: (no additions, terminal stage)

    Attributes:
        inputdir: Directory containing the chat document
        outputdir: Directory receiving the JSON output
        verbosity: Logging verbosity level (1-3)
        inputFile: Chat document filename (relative to inputdir)
        aliasFile: Optional YAML alias table (relative to inputdir)
        outputFile: Output filename written into outputdir
        envOK: Environment validation passed
        inputSourceFile: Resolved path to the chat document
        aliasSourceFile: Resolved path to the alias table, if any
        document: Loaded Document
        aliasTable: Loaded alias descriptors by name
        parseResult: ParseResult for the document
        unexpandedBlocks: Block type names still holding unexpanded markers
        writeResult: Output summary (output_file, message_count, status)
    """

    # CLI arguments
    inputdir: Optional[Path] = field(default=None)
    outputdir: Optional[Path] = field(default=None)
    verbosity: int = field(default=1)
    inputFile: str = field(default="")
    aliasFile: Optional[str] = field(default=None)
    outputFile: str = field(default="messages.json")

    # Pipeline state
    envOK: bool = field(default=False)
    inputSourceFile: Path = field(default=Path("/"))
    aliasSourceFile: Optional[Path] = field(default=None)
    document: Optional[Any] = field(default=None)  # Document at runtime
    aliasTable: Dict[str, Any] = field(default_factory=dict)
    parseResult: Optional[Any] = field(default=None)  # ParseResult at runtime
    unexpandedBlocks: list = field(default_factory=list)
    writeResult: Optional[Dict] = field(default=None)

    @classmethod
    def state_createFromNamespace(
        cls: Type["ProgramState"], options: Namespace, inputdir: Path, outputdir: Path
    ) -> "ProgramState":
        """
        Create ProgramState from argparse Namespace and directory paths.

        Args:
            options: Parsed CLI arguments (inputFile, aliasFile, etc.)
            inputdir: Directory containing source files
            outputdir: Directory for output

        Returns:
            ProgramState instance with all matching CLI options as attributes
        """
        valid_fields = {f.name for f in dataclasses.fields(cls)}
        filtered_options = {k: v for k, v in vars(options).items() if k in valid_fields}
        merged_args = {**filtered_options, "inputdir": inputdir, "outputdir": outputdir}
        return cls(**merged_args)

    def copy(self: PS) -> PS:
        """
        Creates a shallow copy of the ProgramState instance.

        Returns:
            A new ProgramState instance.
        """
        return type(self)(**self.__dict__)


def pipeline(
    initial_state: ProgramState, *stages: Callable[[ProgramState], ProgramState]
) -> ProgramState:
    """
    Execute a functional pipeline of state transformations.

    Each stage is a function (ProgramState) -> ProgramState that receives
    the output of the previous stage and returns a new state.

    Example:
        final_state = pipeline(
            initial_state,
            env_check,
            document_read,
            document_parse,
            results_write,
            results_report
        )
    """
    from functools import reduce
    return reduce(lambda state, stage: stage(state), stages, initial_state)
