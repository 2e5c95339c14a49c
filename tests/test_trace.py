"""Tests for tracker command extraction and the session trace.

Covers:
    - extract_track_commands: single commands, chains, pipes, redirects,
      env assignments, explicit binary paths, unbalanced quotes
    - is_track_command
    - TraceLogger: shell recording, argument recording, step numbering
"""

from __future__ import annotations

from tracker_gym.trace import TraceLogger, extract_track_commands, is_track_command


class TestExtractTrackCommands:
    """Tests for picking tracker invocations out of shell lines."""

    def test_single_command(self) -> None:
        """A plain invocation yields its argument list."""
        assert extract_track_commands("track issue get DEMO-1") == [["issue", "get", "DEMO-1"]]

    def test_quoted_arguments(self) -> None:
        """Quoted arguments stay whole."""
        cmd = 'track issue comment DEMO-1 -m "Starting work; ETA Friday"'
        assert extract_track_commands(cmd) == [
            ["issue", "comment", "DEMO-1", "-m", "Starting work; ETA Friday"]
        ]

    def test_chained_commands(self) -> None:
        """Every tracker invocation in a && chain is found."""
        cmd = "track issue get DEMO-1 && track issue comments DEMO-1"
        assert extract_track_commands(cmd) == [
            ["issue", "get", "DEMO-1"],
            ["issue", "comments", "DEMO-1"],
        ]

    def test_pipe_to_other_tool(self) -> None:
        """Only the tracker side of a pipe is reported."""
        cmd = "track -o json issue search login | jq '.[0]'"
        assert extract_track_commands(cmd) == [["-o", "json", "issue", "search", "login"]]

    def test_redirects_skipped(self) -> None:
        """Redirect operators and their targets are dropped."""
        cmd = "track project list 2>&1 > out.txt"
        assert extract_track_commands(cmd) == [["project", "list"]]

    def test_env_assignment_prefix(self) -> None:
        """Leading VAR=value assignments are skipped."""
        cmd = "TRACK_MOCK_DIR=/tmp/s track issue get DEMO-1"
        assert extract_track_commands(cmd) == [["issue", "get", "DEMO-1"]]

    def test_explicit_binary_path(self) -> None:
        """A configured binary path counts, as does any track basename."""
        assert extract_track_commands("/opt/bin/track tags list") == [["tags", "list"]]
        assert extract_track_commands("./tracker-bin cache show", track_bin="./tracker-bin") == [
            ["cache", "show"]
        ]

    def test_mock_binary(self) -> None:
        """The bundled track-mock script counts as the tracker."""
        assert extract_track_commands("track-mock DEMO-1") == [["DEMO-1"]]

    def test_other_commands_ignored(self) -> None:
        """Non-tracker commands yield nothing."""
        assert extract_track_commands("ls -la; cat notes.txt") == []
        assert not is_track_command("echo track")

    def test_unbalanced_quotes_fall_back(self) -> None:
        """Unparseable quoting degrades to whitespace splitting."""
        assert extract_track_commands('track issue get "DEMO-1') == [["issue", "get", '"DEMO-1']]


class TestTraceLogger:
    """Tests for the ordered session trace."""

    def test_record_shell(self) -> None:
        """Each invocation in a shell line becomes one numbered entry."""
        trace = TraceLogger()
        added = trace.record_shell("track issue get DEMO-1 && track issue start DEMO-1")
        assert [e.step for e in added] == [1, 2]
        assert trace.commands() == ["track issue get DEMO-1", "track issue start DEMO-1"]
        assert added[0].success is None

    def test_record_shell_without_tracker(self) -> None:
        """A line without tracker calls adds nothing."""
        trace = TraceLogger()
        assert trace.record_shell("pwd") == []
        assert trace.entries == []

    def test_record_args(self) -> None:
        """Known argument lists are recorded with their outcome."""
        trace = TraceLogger()
        entry = trace.record_args(["issue", "comment", "DEMO-1", "-m", "on it"], success=True, output="ok")
        assert entry.step == 1
        assert entry.raw == "track issue comment DEMO-1 -m 'on it'"
        assert entry.success is True
        assert trace.entries[0].output == "ok"

    def test_entries_is_a_copy(self) -> None:
        """Mutating the returned list does not change the trace."""
        trace = TraceLogger()
        trace.record_args(["tags", "list"], success=True)
        trace.entries.clear()
        assert len(trace.entries) == 1
