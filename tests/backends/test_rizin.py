"""Tests for the rizin backend parsers and subprocess flow."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from binslicer.analysis.models import (
    AnalysisOptions,
    AnalysisRequest,
    BlockEdgeKind,
    EvidenceKind,
)
from binslicer.backends.rizin import (
    RizinBackend,
    parse_basic_blocks,
    parse_functions,
    parse_imports,
    parse_strings,
)
from binslicer.core.errors import AnalysisError, ErrorCode

AFLJ = json.dumps(
    [
        {
            "offset": 4096,
            "name": "sym.main",
            "size": 32,
            "callrefs": [
                {"addr": 8192, "type": "CALL", "name": "sym.helper"},
                {"addr": 4100, "type": "JMP"},
            ],
        },
        {
            "offset": 8192,
            "name": "sym.helper",
            "size": 16,
            "callrefs": [{"addr": 12288, "type": "C"}],
        },
        {"offset": 12288, "name": "sym.leaf", "size": 8},
    ]
)

AGFJ = json.dumps(
    [
        {
            "blocks": [
                {"offset": 4096, "size": 8, "jump": 4112, "fail": 4104},
                {"offset": 4104, "size": 8, "jump": 4112},
                {"offset": 4112, "size": 4},
            ]
        }
    ]
)

IZJ = json.dumps([{"vaddr": 20480, "string": "hello"}, {"vaddr": 20490}])
IIJ = json.dumps([{"plt": 24576, "name": "recv"}])


def _completed(stdout: str, returncode: int = 0) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


def _fake_rizin(outputs: dict[str, Any]):
    """side_effect dispatching on the -c command (or -v)."""

    def run(args: list[str], **_: object) -> subprocess.CompletedProcess[str]:
        if args[1] == "-v":
            return _completed("rizin 0.7.3 @ linux-x86-64\ncommit: abc\n")
        command = args[args.index("-c") + 1]
        out = outputs[command]
        if isinstance(out, BaseException):
            raise out
        return out if isinstance(out, subprocess.CompletedProcess) else _completed(out)

    return run


def _request(binary: Path, **options: Any) -> AnalysisRequest:
    return AnalysisRequest(
        ritual_name="R",
        binary_name=binary.name,
        binary_path=binary,
        roots=["main"],
        options=AnalysisOptions(**options),
        backend_path=Path("/opt/rizin/bin/rizin"),
    )


class TestParsers:
    def test_functions_calls_and_call_evidence(self) -> None:
        functions, edges, evidence = parse_functions(AFLJ)

        assert [f.address for f in functions] == [4096, 8192, 12288]
        assert functions[0].name == "sym.main"
        assert functions[0].size == 32
        # non-call references are ignored
        assert [(e.from_addr, e.to_addr) for e in edges] == [(4096, 8192), (8192, 12288)]
        assert [e.description for e in evidence] == ["call -> sym.helper", "call -> 0x3000"]
        assert all(e.kind is EvidenceKind.CALL for e in evidence)

    def test_duplicate_functions_and_edges_collapse(self) -> None:
        body = json.dumps(
            [
                {"offset": 16, "name": "a", "callrefs": [{"addr": 32, "type": "call"}]},
                {"offset": 16, "name": "a2", "callrefs": [{"addr": 32, "type": "call"}]},
            ]
        )

        functions, edges, _ = parse_functions(body)

        assert len(functions) == 1
        assert functions[0].name == "a"
        assert len(edges) == 1

    def test_empty_output_is_empty(self) -> None:
        assert parse_functions("  \n") == ([], [], [])

    def test_invalid_json_raises_backend_error(self) -> None:
        with pytest.raises(AnalysisError) as exc_info:
            parse_functions("{not json")

        assert exc_info.value.code is ErrorCode.BACKEND_ERROR

    def test_non_array_json_raises_backend_error(self) -> None:
        with pytest.raises(AnalysisError):
            parse_functions('{"offset": 1}')

    def test_basic_block_successor_kinds(self) -> None:
        blocks = parse_basic_blocks(AGFJ)

        first, second, third = blocks
        assert [(s.target, s.kind) for s in first.successors] == [
            (4112, BlockEdgeKind.CONDITIONAL_JUMP),
            (4104, BlockEdgeKind.FALLTHROUGH),
        ]
        assert [(s.target, s.kind) for s in second.successors] == [(4112, BlockEdgeKind.JUMP)]
        assert third.successors == []
        assert third.length == 4

    def test_strings_without_text_skipped(self) -> None:
        evidence = parse_strings(IZJ)

        assert [(e.address, e.description) for e in evidence] == [(20480, "string: hello")]
        assert evidence[0].kind is EvidenceKind.STRING

    def test_imports(self) -> None:
        [record] = parse_imports(IIJ)

        assert record.address == 24576
        assert record.description == "import: recv"
        assert record.kind is EvidenceKind.IMPORT


class TestRizinBackend:
    def test_executable_precedence(self, tmp_path: Path) -> None:
        request = _request(tmp_path / "b.so").model_copy(update={"backend_path": None})

        assert RizinBackend().executable(request) == "rizin"
        assert RizinBackend(default_path="/usr/bin/rizin").executable(request) == "/usr/bin/rizin"

    def test_given_outputs_when_analyzed_then_result_assembled(self, tmp_path: Path) -> None:
        # Given
        binary = tmp_path / "b.so"
        binary.write_bytes(b"\x7fELF")
        outputs = {"aa;aflj": AFLJ, "aa;agfj": AGFJ, "izj": IZJ, "iij": IIJ}

        # When
        with patch(
            "binslicer.backends.rizin.subprocess.run", side_effect=_fake_rizin(outputs)
        ) as run:
            result = RizinBackend().analyze(_request(binary))

        # Then
        assert result.backend_version == "rizin 0.7.3 @ linux-x86-64"
        assert result.backend_path == "/opt/rizin/bin/rizin"
        assert result.roots == ["main"]
        assert len(result.functions) == 3
        assert len(result.basic_blocks) == 3
        kinds = {e.kind for e in result.evidence}
        assert kinds == {EvidenceKind.CALL, EvidenceKind.STRING, EvidenceKind.IMPORT}
        first_call = run.call_args_list[1].args[0]
        assert first_call == ["/opt/rizin/bin/rizin", "-2", "-q0", "-c", "aa;aflj", str(binary)]

    def test_optional_commands_skipped_by_options(self, tmp_path: Path) -> None:
        binary = tmp_path / "b.so"
        binary.write_bytes(b"x")
        outputs = {"aa;aflj": AFLJ, "aa;agfj": AGFJ}

        with patch(
            "binslicer.backends.rizin.subprocess.run", side_effect=_fake_rizin(outputs)
        ):
            result = RizinBackend().analyze(
                _request(binary, include_strings=False, include_imports=False)
            )

        assert {e.kind for e in result.evidence} == {EvidenceKind.CALL}

    def test_optional_command_failure_is_tolerated(self, tmp_path: Path) -> None:
        binary = tmp_path / "b.so"
        binary.write_bytes(b"x")
        outputs = {
            "aa;aflj": AFLJ,
            "aa;agfj": AGFJ,
            "izj": _completed("", returncode=1),
            "iij": IIJ,
        }

        with patch(
            "binslicer.backends.rizin.subprocess.run", side_effect=_fake_rizin(outputs)
        ):
            result = RizinBackend().analyze(_request(binary))

        assert EvidenceKind.STRING not in {e.kind for e in result.evidence}
        assert EvidenceKind.IMPORT in {e.kind for e in result.evidence}

    def test_required_command_failure_raises(self, tmp_path: Path) -> None:
        binary = tmp_path / "b.so"
        binary.write_bytes(b"x")
        outputs = {"aa;aflj": _completed("", returncode=2)}

        with patch(
            "binslicer.backends.rizin.subprocess.run", side_effect=_fake_rizin(outputs)
        ):
            with pytest.raises(AnalysisError) as exc_info:
                RizinBackend().analyze(_request(binary))

        assert exc_info.value.code is ErrorCode.BACKEND_ERROR
        assert "exited with 2" in exc_info.value.message

    def test_timeout_raises_backend_error(self, tmp_path: Path) -> None:
        binary = tmp_path / "b.so"
        binary.write_bytes(b"x")
        outputs = {"aa;aflj": subprocess.TimeoutExpired(cmd="rizin", timeout=1.0)}

        with patch(
            "binslicer.backends.rizin.subprocess.run", side_effect=_fake_rizin(outputs)
        ):
            with pytest.raises(AnalysisError) as exc_info:
                RizinBackend(timeout=1.0).analyze(_request(binary))

        assert "timed out" in exc_info.value.message

    def test_missing_executable_is_backend_missing(self, tmp_path: Path) -> None:
        binary = tmp_path / "b.so"
        binary.write_bytes(b"x")

        with patch(
            "binslicer.backends.rizin.subprocess.run", side_effect=FileNotFoundError("rizin")
        ):
            with pytest.raises(AnalysisError) as exc_info:
                RizinBackend().analyze(_request(binary))

        assert exc_info.value.code is ErrorCode.BACKEND_MISSING
        assert exc_info.value.message == "Backend not found: /opt/rizin/bin/rizin"

    def test_spawn_failure_is_backend_error(self, tmp_path: Path) -> None:
        binary = tmp_path / "b.so"
        binary.write_bytes(b"x")

        with patch(
            "binslicer.backends.rizin.subprocess.run", side_effect=PermissionError("denied")
        ):
            with pytest.raises(AnalysisError) as exc_info:
                RizinBackend().analyze(_request(binary))

        assert exc_info.value.code is ErrorCode.BACKEND_ERROR

    def test_missing_binary_checked_before_spawning(self, tmp_path: Path) -> None:
        with patch("binslicer.backends.rizin.subprocess.run") as run:
            with pytest.raises(AnalysisError) as exc_info:
                RizinBackend().analyze(_request(tmp_path / "absent.so"))

        assert exc_info.value.code is ErrorCode.MISSING_BINARY
        run.assert_not_called()
