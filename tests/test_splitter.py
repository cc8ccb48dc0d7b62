"""Tests for the streaming CSV splitter."""

import io
import os
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from cdr_workers.errors import DecodeError, PipelineCancelled, SchemaError, TransformError
from cdr_workers.models import SourceStream
from cdr_workers.parsers import ByteBound, DateTimeMergeTransformer, RowBound, StreamSplitter, bound_from_config
from cdr_workers.parsers.chunk_writer import ChunkWriter

from conftest import INPUT_HEADER, OUTPUT_HEADER, make_csv, make_row, read_lines


def split(chunk_dir, data, bound=None, transform=None, prefix="calls", **kwargs):
    splitter = StreamSplitter(temp_dir=str(chunk_dir))
    return splitter.split(
        SourceStream(stream=io.BytesIO(data)),
        name_prefix=prefix,
        bound=bound,
        transform=transform,
        **kwargs,
    )


def data_lines(chunks):
    lines = []
    for chunk in chunks:
        lines.extend(read_lines(chunk.file_path)[1:])
    return lines


class TestBounds:

    @pytest.mark.parametrize("bound", [0, -1])
    def test_non_positive_limits_rejected(self, bound):
        with pytest.raises(ValueError):
            RowBound(bound)
        with pytest.raises(ValueError):
            ByteBound(bound)

    def test_bound_from_config(self):
        assert bound_from_config(5, None) == RowBound(5)
        assert bound_from_config(5, 1024) == ByteBound(1024)
        assert bound_from_config() == RowBound(10000000)


class TestRowBoundSplitting:

    @pytest.mark.parametrize("rows,max_rows,expected_chunks", [
        (1, 1000, 1),
        (10000, 1000, 10),
        (10001, 1000, 11),
    ])
    def test_chunk_count(self, chunk_dir, csv_bytes, rows, max_rows, expected_chunks):
        chunks = split(chunk_dir, csv_bytes(rows), RowBound(max_rows))

        assert len(chunks) == expected_chunks
        assert [chunk.sequence_number for chunk in chunks] == list(range(expected_chunks))
        assert sum(chunk.row_count for chunk in chunks) == rows
        assert all(chunk.row_count <= max_rows for chunk in chunks)
        assert all(chunk.row_count == max_rows for chunk in chunks[:-1])

    def test_every_chunk_starts_with_the_header(self, chunk_dir, csv_bytes):
        chunks = split(chunk_dir, csv_bytes(25), RowBound(10))

        for chunk in chunks:
            lines = read_lines(chunk.file_path)
            assert lines[0] == INPUT_HEADER
            assert chunk.header == INPUT_HEADER
            assert len(lines) == chunk.row_count + 1

    def test_rows_preserved_in_order(self, chunk_dir):
        text = make_csv(25)
        chunks = split(chunk_dir, text.encode("utf-8"), RowBound(7))

        assert data_lines(chunks) == text.splitlines()[1:]

    def test_byte_size_matches_file(self, chunk_dir, csv_bytes):
        chunks = split(chunk_dir, csv_bytes(30), RowBound(7))

        for chunk in chunks:
            assert chunk.byte_size == os.path.getsize(chunk.file_path)

    def test_crlf_input_written_with_lf(self, chunk_dir, csv_bytes):
        chunks = split(chunk_dir, csv_bytes(5, newline="\r\n"), RowBound(10))

        with open(chunks[0].file_path, "rb") as f:
            content = f.read()
        assert b"\r" not in content
        assert content.count(b"\n") == 6


class TestByteBoundSplitting:

    def test_chunks_stay_under_the_limit(self, chunk_dir, csv_bytes):
        max_bytes = 1024
        chunks = split(chunk_dir, csv_bytes(200), ByteBound(max_bytes))

        assert len(chunks) > 1
        assert sum(chunk.row_count for chunk in chunks) == 200
        for chunk in chunks:
            assert chunk.byte_size <= max_bytes
            assert chunk.byte_size == os.path.getsize(chunk.file_path)

    def test_rows_never_split(self, chunk_dir):
        text = make_csv(200)
        chunks = split(chunk_dir, text.encode("utf-8"), ByteBound(1024))

        assert data_lines(chunks) == text.splitlines()[1:]

    def test_oversized_row_gets_its_own_chunk(self, chunk_dir, csv_bytes):
        chunks = split(chunk_dir, csv_bytes(3), ByteBound(10))

        assert len(chunks) == 3
        assert all(chunk.row_count == 1 for chunk in chunks)
        assert all(chunk.byte_size > 10 for chunk in chunks)

    def test_limit_counts_encoded_bytes(self, chunk_dir):
        header = "caller_id,recipient,call_date,end_time,duration,cost,reference,currency"
        row = "1,2,16/08/2016,14:21:33,43,0,ÆØÅ,GBP"
        data = "\n".join([header, row, row]) + "\n"
        header_size = len((header + "\n").encode("utf-8"))
        row_size = len((row + "\n").encode("utf-8"))

        chunks = split(chunk_dir, data.encode("utf-8"), ByteBound(header_size + row_size))

        assert len(chunks) == 2
        assert chunks[0].byte_size == header_size + row_size


class TestHeader:

    def test_invalid_header_creates_no_files(self, tmp_path, csv_bytes):
        out_dir = tmp_path / "out"

        with pytest.raises(SchemaError) as exc_info:
            split(out_dir, csv_bytes(5, header="foo,bar"), RowBound(2))

        assert exc_info.value.name_prefix == "calls"
        assert exc_info.value.actual == "foo,bar"
        assert not out_dir.exists()

    def test_validation_can_be_disabled(self, chunk_dir, csv_bytes):
        splitter = StreamSplitter(temp_dir=str(chunk_dir), validate_header=False)

        chunks = splitter.split(SourceStream(stream=io.BytesIO(csv_bytes(2, header="a,b,c"))), "calls")

        assert chunks[0].header == "a,b,c"
        assert chunks[0].row_count == 2

    def test_transform_rewrites_header(self, chunk_dir, csv_bytes):
        chunks = split(chunk_dir, csv_bytes(3), RowBound(10), transform=DateTimeMergeTransformer())

        lines = read_lines(chunks[0].file_path)
        assert lines[0] == OUTPUT_HEADER
        assert chunks[0].header == OUTPUT_HEADER
        assert all(line.count(",") == 6 for line in lines)

    def test_header_too_short_for_transform(self, chunk_dir):
        splitter = StreamSplitter(temp_dir=str(chunk_dir), validate_header=False)

        with pytest.raises(SchemaError):
            splitter.split(
                SourceStream(stream=io.BytesIO(b"a,b\n1,2\n")),
                "calls",
                transform=DateTimeMergeTransformer(),
            )

        assert os.listdir(chunk_dir) == []


class TestEdgeCases:

    def test_empty_stream(self, chunk_dir):
        assert split(chunk_dir, b"", RowBound(10)) == []
        assert os.listdir(chunk_dir) == []

    def test_header_only(self, chunk_dir):
        assert split(chunk_dir, (INPUT_HEADER + "\n").encode("utf-8"), RowBound(10)) == []
        assert os.listdir(chunk_dir) == []

    def test_chunk_naming(self, chunk_dir, csv_bytes):
        chunks = split(chunk_dir, csv_bytes(5), RowBound(2), prefix="upload-2016")

        assert [chunk.file_name for chunk in chunks] == ["upload-2016_0.csv", "upload-2016_1.csv", "upload-2016_2.csv"]
        assert all(os.path.dirname(chunk.file_path) == str(chunk_dir) for chunk in chunks)

    @pytest.mark.parametrize("prefix", [None, "", "   "])
    def test_blank_prefix_uses_uuid(self, chunk_dir, csv_bytes, prefix):
        chunks = split(chunk_dir, csv_bytes(1), RowBound(2), prefix=prefix)

        name = chunks[0].file_name
        assert name.endswith("_0.csv")
        assert len(name[:-len("_0.csv")]) == 36

    def test_utf16_input_written_as_utf8(self, chunk_dir):
        data = make_csv(3).encode("utf-16")

        chunks = split(chunk_dir, data, RowBound(10))

        assert read_lines(chunks[0].file_path)[0] == INPUT_HEADER
        assert chunks[0].row_count == 3

    def test_utf8_bom_not_in_header(self, chunk_dir):
        data = b"\xef\xbb\xbf" + make_csv(2).encode("utf-8")

        chunks = split(chunk_dir, data, RowBound(10))

        assert chunks[0].header == INPUT_HEADER

    def test_bom_output_encoding_rejected(self, chunk_dir, csv_bytes):
        splitter = StreamSplitter(temp_dir=str(chunk_dir), output_encoding="utf-16")

        with pytest.raises(ValueError):
            splitter.split(SourceStream(stream=io.BytesIO(csv_bytes(2))), "calls")

    def test_source_stream_left_open(self, chunk_dir, csv_bytes):
        stream = io.BytesIO(csv_bytes(2))

        StreamSplitter(temp_dir=str(chunk_dir)).split(SourceStream(stream=stream), "calls")

        assert not stream.closed

    def test_source_stream_closed_when_requested(self, chunk_dir, csv_bytes):
        stream = io.BytesIO(csv_bytes(2))

        StreamSplitter(temp_dir=str(chunk_dir)).split(SourceStream(stream=stream, leave_open=False), "calls")

        assert stream.closed


class TestFailures:

    def test_transform_error_reports_chunk_position(self, chunk_dir):
        rows = [make_row(i) for i in range(5)]
        rows[3] = "1,2,16/08/2016"
        data = "\n".join([INPUT_HEADER] + rows) + "\n"

        with pytest.raises(TransformError) as exc_info:
            split(chunk_dir, data.encode("utf-8"), RowBound(2), transform=DateTimeMergeTransformer())

        error = exc_info.value
        assert error.row_index == 1
        assert error.source_line == 5
        assert error.file_path == str(chunk_dir / "calls_1.csv")
        assert error.line == "1,2,16/08/2016"

    def test_chunks_written_before_failure_are_kept(self, chunk_dir):
        rows = [make_row(i) for i in range(5)]
        rows[3] = "bad"
        data = "\n".join([INPUT_HEADER] + rows) + "\n"

        with pytest.raises(TransformError):
            split(chunk_dir, data.encode("utf-8"), RowBound(2), transform=DateTimeMergeTransformer())

        assert sorted(os.listdir(chunk_dir)) == ["calls_0.csv", "calls_1.csv"]
        assert len(read_lines(str(chunk_dir / "calls_0.csv"))) == 3

    def test_transform_error_under_byte_bound_names_the_active_chunk(self, chunk_dir):
        data = "\n".join([INPUT_HEADER, make_row(0), "1,2,16/08/2016"]) + "\n"

        with pytest.raises(TransformError) as exc_info:
            split(chunk_dir, data.encode("utf-8"), ByteBound(10), transform=DateTimeMergeTransformer())

        error = exc_info.value
        assert error.file_path == str(chunk_dir / "calls_0.csv")
        assert error.row_index == 1
        assert error.source_line == 3

    def test_undecodable_bytes_near_the_start(self, chunk_dir):
        data = make_csv(1).encode("utf-8") + b"1,2,16/08/2016,\xff\xfe,43,0,R1,GBP\n"

        with pytest.raises(DecodeError) as exc_info:
            split(chunk_dir, data, RowBound(2))

        error = exc_info.value
        assert error.name_prefix == "calls"
        assert error.encoding == "utf-8"
        assert error.line_number >= 1
        assert "Cannot decode input as utf-8" in error.message
        assert os.listdir(chunk_dir) == []

    def test_undecodable_bytes_after_many_rows(self, chunk_dir):
        data = make_csv(2000).encode("utf-8") + b"1,2,16/08/2016,\xff,43,0,R1,GBP\n"

        with pytest.raises(DecodeError) as exc_info:
            split(chunk_dir, data, RowBound(500))

        assert 1 < exc_info.value.line_number <= 2002
        written = sorted(os.listdir(chunk_dir))
        assert written
        for name in written:
            assert read_lines(str(chunk_dir / name))[0] == INPUT_HEADER


class CancellingTransformer(DateTimeMergeTransformer):
    """Requests cancellation once a given source line has been transformed"""

    def __init__(self, event: threading.Event, cancel_at_line: int):
        super().__init__()
        self.event = event
        self.cancel_at_line = cancel_at_line

    def transform(self, line, file_path=None, row_index=0, source_line=None):
        result = super().transform(line, file_path, row_index, source_line)
        if source_line == self.cancel_at_line:
            self.event.set()
        return result


class TestCancellation:

    def test_cancel_between_rows(self, chunk_dir, csv_bytes):
        event = threading.Event()

        with pytest.raises(PipelineCancelled) as exc_info:
            split(
                chunk_dir,
                csv_bytes(10),
                RowBound(2),
                transform=CancellingTransformer(event, cancel_at_line=4),
                cancel_event=event,
            )

        cancelled = exc_info.value
        assert cancelled.stage == "split"
        assert [chunk.row_count for chunk in cancelled.completed] == [2, 1]
        assert all(os.path.exists(chunk.file_path) for chunk in cancelled.completed)

    def test_cancel_before_first_row(self, chunk_dir, csv_bytes):
        event = threading.Event()
        event.set()

        with pytest.raises(PipelineCancelled) as exc_info:
            split(chunk_dir, csv_bytes(3), RowBound(2), cancel_event=event)

        assert exc_info.value.completed == []
        assert os.listdir(chunk_dir) == []


class TestChunkWriter:

    def test_seal_is_idempotent(self, chunk_dir):
        writer = ChunkWriter(str(chunk_dir / "c_0.csv"), "a,b", 0)
        writer.write_row("1,2")

        first = writer.seal()

        assert writer.sealed
        assert writer.seal() is first
        assert first.row_count == 1
        assert first.byte_size == len(b"a,b\n1,2\n")

    def test_write_after_seal_rejected(self, chunk_dir):
        with ChunkWriter(str(chunk_dir / "c_0.csv"), "a,b", 0) as writer:
            pass

        with pytest.raises(ValueError):
            writer.write_row("1,2")

    def test_header_is_not_a_row(self, chunk_dir):
        with ChunkWriter(str(chunk_dir / "c_0.csv"), "a,b", 3) as writer:
            assert writer.row_count == 0
            assert writer.byte_size == 4

        assert writer.seal().sequence_number == 3


class RendezvousTransformer(DateTimeMergeTransformer):
    """Holds each split at its first data row until every split has reached it"""

    def __init__(self, barrier: threading.Barrier):
        super().__init__()
        self.barrier = barrier

    def transform(self, line, file_path=None, row_index=0, source_line=None):
        if source_line == 2:
            self.barrier.wait(timeout=10)
        return super().transform(line, file_path, row_index, source_line)


class TestConcurrentUse:

    def test_one_splitter_serves_parallel_uploads(self, chunk_dir, csv_bytes):
        splitter = StreamSplitter(temp_dir=str(chunk_dir))
        transform = RendezvousTransformer(threading.Barrier(2))
        uploads = {"north": 230, "south": 170}

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = {
                prefix: executor.submit(
                    splitter.split,
                    SourceStream(stream=io.BytesIO(csv_bytes(rows))),
                    prefix,
                    RowBound(50),
                    transform,
                )
                for prefix, rows in uploads.items()
            }
            results = {prefix: future.result() for prefix, future in futures.items()}

        for prefix, chunks in results.items():
            assert all(chunk.file_name.startswith(f"{prefix}_") for chunk in chunks)
            assert [chunk.sequence_number for chunk in chunks] == list(range(len(chunks)))
            assert sum(chunk.row_count for chunk in chunks) == uploads[prefix]
            assert sum(len(read_lines(chunk.file_path)) - 1 for chunk in chunks) == uploads[prefix]
        assert len(os.listdir(chunk_dir)) == len(results["north"]) + len(results["south"])
