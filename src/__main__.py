#!/usr/bin/env python3
"""
chatdoc - Chat documents as conversations

Reads a chat document (a plain text file of '>>> user' / '<<< assistant'
sections, optional header, config block and content blocks), parses it
into the role-tagged message list a chat API expects, and writes that list
together with the merged request config as JSON.

As an aside, this codebase leverages the ChRIS "plugin" concept/pattern as
general purpose python app development framework.

Usage:
    chatdoc inputdir/ outputdir/ --inputFile chat.md

    The parsed conversation is written to outputdir/messages.json.

Examples:
    # Basic parse
    chatdoc . output/ --inputFile chat.md

    # With an alias table and a custom output name
    chatdoc . output/ --inputFile chat.md --aliasFile aliases.yaml --outputFile request.json

    # Verbose output
    chatdoc . output/ --inputFile chat.md -vv
"""

import json
import sys
from pathlib import Path
from argparse import ArgumentParser, Namespace, ArgumentDefaultsHelpFormatter

from chris_plugin import chris_plugin
from .lib import Document, Session, aliases_load, __version__, LOG, state_connectToLogger
from .lib.errors import ParseError
from .lib.log import LOG_error
from .models import ProgramState, pipeline


# Define CLI arguments
parser = ArgumentParser(
    description="chatdoc - parse chat documents into role-tagged messages",
    formatter_class=ArgumentDefaultsHelpFormatter,
)

parser.add_argument(
    "--inputFile", required=True, type=str, help="Input chat document (relative to inputdir)"
)

parser.add_argument(
    "--aliasFile",
    default=None,
    type=str,
    help="YAML alias table (relative to inputdir)",
)

parser.add_argument(
    "--outputFile",
    default="messages.json",
    type=str,
    help="Name of the JSON file written into outputdir",
)

parser.add_argument(
    "-v",
    "--verbosity",
    action="count",
    default=1,
    help="Increase output verbosity (can be repeated: -v, -vv, -vvv)",
)

parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")


def env_check(inputstate: ProgramState) -> ProgramState:
    """
    Validate environment and resolve all file paths.

    Args:
        inputstate: Initial program state with CLI options

    Returns:
        ProgramState with added fields:
            - inputSourceFile: Resolved path to the chat document
            - aliasSourceFile: Resolved path to the alias table (or None)
            - envOK: True if environment is valid

    Exits:
        1 if the chat document or alias table is not found
    """
    state = inputstate.copy()

    LOG("Checking environment...", level=2)

    input_file = state.inputdir / state.inputFile
    if not input_file.exists():
        LOG_error(f"Input file not found: {input_file}")
        state.envOK = False
        sys.exit(1)
    state.inputSourceFile = input_file
    LOG(f"Input file: {input_file}", level=2)

    if state.aliasFile:
        alias_file = state.inputdir / state.aliasFile
        if not alias_file.exists():
            LOG_error(f"Alias file not found: {alias_file}")
            state.envOK = False
            sys.exit(1)
        state.aliasSourceFile = alias_file
        LOG(f"Alias file: {alias_file}", level=2)

    state.outputdir.mkdir(parents=True, exist_ok=True)
    LOG(f"Output directory: {state.outputdir}", level=2)

    state.envOK = True
    return state


def document_read(inputstate: ProgramState) -> ProgramState:
    """
    Load the chat document and the alias table.

    Returns:
        ProgramState with added fields:
            - document: Document holding the file's lines
            - aliasTable: name -> AliasDescriptor

    Exits:
        1 if a file cannot be read or the alias table is invalid
    """
    state = inputstate.copy()

    LOG("Reading chat document...", level=1)
    try:
        state.document = Document.from_file(state.inputSourceFile)
        LOG(f"Read {len(state.document)} lines from {state.inputSourceFile.name}", level=2)
    except OSError as e:
        LOG_error(f"Error reading input file: {e}")
        sys.exit(1)

    if state.aliasSourceFile:
        try:
            state.aliasTable = aliases_load(state.aliasSourceFile)
        except (OSError, ParseError) as e:
            LOG_error(f"Error reading alias file: {e}")
            sys.exit(1)
    return state


def document_parse(inputstate: ProgramState) -> ProgramState:
    """
    Parse the document into messages and config.

    Returns:
        ProgramState with added fields:
            - parseResult: ParseResult
            - unexpandedBlocks: Block types still holding unexpanded markers
    """
    state = inputstate.copy()

    LOG("Parsing chat document...", level=1)
    session = Session(aliases=state.aliasTable, verbosity=state.verbosity)
    try:
        state.parseResult = session.document_parse(state.document)
        state.unexpandedBlocks = [
            name for name in session.expander.block_types
            if session.expander.has_unexpanded(state.document, name)
        ]
    finally:
        session.close()

    for warning in state.parseResult.warnings:
        LOG(f"Warning: {warning}", level=1)
    LOG(f"Parsed {len(state.parseResult.messages)} messages", level=2)
    return state


def results_write(inputstate: ProgramState) -> ProgramState:
    """
    Write messages and config as JSON.

    Returns:
        ProgramState with added field:
            - writeResult: Dict containing:
                - status: bool
                - output_file: str
                - message_count: int
    """
    state = inputstate.copy()

    if state.parseResult is None:
        LOG_error("No parse result available")
        sys.exit(1)

    output_file = state.outputdir / state.outputFile
    payload = {
        "title": state.parseResult.title,
        "messages": state.parseResult.payload_make(),
        "config": state.parseResult.config,
        "warnings": [str(warning) for warning in state.parseResult.warnings],
        "unexpanded_blocks": state.unexpandedBlocks,
    }
    output_file.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    state.writeResult = {
        "status": True,
        "output_file": str(output_file),
        "message_count": len(state.parseResult.messages),
    }
    return state


def results_report(inputstate: ProgramState) -> ProgramState:
    """
    Display a summary of the parse.

    Returns:
        ProgramState unchanged (terminal pipeline stage)

    Exits:
        1 if writeResult is None
    """
    state: ProgramState = inputstate.copy()
    if not state.writeResult:
        LOG_error("Writing results failed")
        sys.exit(1)

    LOG("\n✓ Parse successful!", level=1)
    LOG(f"  Output:   {state.writeResult['output_file']}", level=1)
    LOG(f"  Messages: {state.writeResult['message_count']}", level=1)
    if state.unexpandedBlocks:
        LOG(f"  Unexpanded blocks: {', '.join(state.unexpandedBlocks)}", level=1)
    return state


@chris_plugin(
    parser=parser,
    title="chatdoc - chat document parser",
    category="Utility",
    min_memory_limit="100Mi",
    min_cpu_limit="500m",
)
def main(options: Namespace, inputdir: Path, outputdir: Path):
    """
    Main entry point - parse a chat document into JSON.

    Pipeline:
        1. env_check: Validate paths
        2. document_read: Load document and alias table
        3. document_parse: Parse messages and config
        4. results_write: Write outputdir/<outputFile>
        5. results_report: Display results

    Note:
        This function is wrapped by @chris_plugin which handles CLI
        argument parsing and invokes this function with parsed values.
    """
    state: ProgramState = ProgramState.state_createFromNamespace(
        options=options, inputdir=inputdir, outputdir=outputdir
    )

    # Connect state to logger for entire pipeline
    state_connectToLogger(state)

    pipeline(state, env_check, document_read, document_parse, results_write, results_report)


if __name__ == "__main__":
    main()  # type: ignore  # @chris_plugin decorator transforms signature
