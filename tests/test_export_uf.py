import json
import struct
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SCRIPTS = ROOT / "scripts"
if str(SCRIPTS) not in sys.path:
    sys.path.insert(0, str(SCRIPTS))

from export_uf import export_partitions, main, partition_by_uf, read_bin, valid_records  # type: ignore
from municipio import Municipio  # type: ignore
from parse_municipios import decode_bytes, decode_json  # type: ignore


def _records():
    return [
        Municipio("003", "3509502", "CAMPINAS", "Campinas", "SP"),
        Municipio("001", "3550308", "Sao Paulo", "São Paulo", "SP"),
        Municipio("004", "3548500", "SANTOS", "", "sp"),
        Municipio("9707", "", "Buenos Aires", "", "EX"),
        Municipio("002", "3304557", "Rio de Janeiro", "Rio de Janeiro", "RJ"),
        Municipio("005", "3106200", "belo horizonte", "belo horizonte", "MG"),
        Municipio("006", "3100104", "Abadia dos Dourados", "Abadia dos Dourados", "MG"),
    ]


def test_partition_orders_groups_and_names():
    groups = partition_by_uf(_records())
    assert [uf for uf, _ in groups] == ["MG", "RJ", "SP"]
    sp = dict(groups)["SP"]
    assert [m.nome_preferido for m in sp] == ["Campinas", "SANTOS", "São Paulo"]
    for _, rows in groups:
        names = [m.nome_preferido.upper() for m in rows]
        assert names == sorted(names)


def test_partition_keeps_every_non_reserved_record():
    records = _records()
    exported = sum(len(rows) for _, rows in partition_by_uf(records))
    reserved = sum(1 for m in records if m.uf == "EX")
    assert exported + reserved == len(records)
    assert len(list(valid_records(records))) == exported


def test_end_to_end_two_lines(tmp_path: Path):
    text = "001;3550308;Sao Paulo;São Paulo;sp\n002;3304557;Rio de Janeiro;Rio de Janeiro;RJ\n"
    records = decode_bytes(text.encode("utf-8"))
    assert len(records) == 2

    reported = []
    n = export_partitions(records, tmp_path / "out", report=lambda uf, k: reported.append((uf, k)))
    assert n == 2
    assert reported == [("RJ", 1), ("SP", 1)]

    sp_csv = (tmp_path / "out" / "municipios_SP.csv").read_bytes()
    assert not sp_csv.startswith(b"\xef\xbb\xbf")
    lines = sp_csv.decode("utf-8").splitlines()
    assert lines == ["TOM;IBGE;NomeTOM;NomeIBGE;UF", "001;3550308;Sao Paulo;São Paulo;SP"]


def test_json_artifact_roundtrips(tmp_path: Path):
    records = _records()
    export_partitions(records, tmp_path)

    back = []
    for path in sorted(tmp_path.glob("municipios_*.json")):
        back.extend(decode_json(path))
    assert set(back) == set(valid_records(records))

    payload = json.loads((tmp_path / "municipios_RJ.json").read_text(encoding="utf-8"))
    assert payload == [
        {
            "tom": "002",
            "ibge": "3304557",
            "nome_tom": "Rio de Janeiro",
            "nome_ibge": "Rio de Janeiro",
            "uf": "RJ",
            "nome_preferido": "Rio de Janeiro",
        }
    ]


def test_binary_layout(tmp_path: Path):
    export_partitions([Municipio("001", "3550308", "Sao Paulo", "São Paulo", "SP"), Municipio("002", "", "", "", "SP")], tmp_path)
    raw = (tmp_path / "municipios_SP.bin").read_bytes()
    assert struct.unpack("<i", raw[:4]) == (2,)
    # the nameless record sorts first; empty fields are zero-length strings
    assert raw[4:14] == b"\x03002\x00\x00\x00\x02SP"
    name = "São Paulo".encode("utf-8")
    assert bytes([len(name)]) + name in raw
    assert raw.endswith(b"\x02SP")


def test_binary_reads_back_in_order(tmp_path: Path):
    records = _records()
    export_partitions(records, tmp_path)
    mg = read_bin(tmp_path / "municipios_MG.bin")
    assert [m.ibge for m in mg] == ["3100104", "3106200"]


def test_binary_long_string_uses_multibyte_prefix(tmp_path: Path):
    long_name = "X" * 200
    export_partitions([Municipio("1", "2", long_name, long_name, "AC")], tmp_path)
    raw = (tmp_path / "municipios_AC.bin").read_bytes()
    assert b"\xc8\x01" + long_name.encode("ascii") in raw
    assert read_bin(tmp_path / "municipios_AC.bin")[0].nome_ibge == long_name


def test_export_overwrites_existing_files(tmp_path: Path):
    target = tmp_path / "municipios_SP.csv"
    target.write_text("stale\n" * 10, encoding="utf-8")
    export_partitions([Municipio("001", "3550308", "Sao Paulo", "São Paulo", "SP")], tmp_path)
    assert "stale" not in target.read_text(encoding="utf-8")


def test_main_missing_input(capsys, tmp_path: Path):
    rc = main([str(tmp_path / "missing.csv"), "-o", str(tmp_path / "out")])
    assert rc == 2
    assert "ERROR" in capsys.readouterr().err


def test_write_failure_keeps_earlier_partitions(monkeypatch, tmp_path: Path):
    import export_uf  # type: ignore

    real_write_bin = export_uf.write_bin

    def failing_write_bin(path, rows):
        if path.name == "municipios_SP.bin":
            raise OSError("disk full")
        real_write_bin(path, rows)

    monkeypatch.setattr(export_uf, "write_bin", failing_write_bin)
    records = _records()
    with pytest.raises(OSError):
        export_partitions(records, tmp_path)

    for uf in ("MG", "RJ"):
        rows = dict(partition_by_uf(records))[uf]
        assert read_bin(tmp_path / f"municipios_{uf}.bin") == rows
        assert decode_json(tmp_path / f"municipios_{uf}.json") == rows
        csv_lines = (tmp_path / f"municipios_{uf}.csv").read_text(encoding="utf-8").splitlines()
        assert len(csv_lines) == len(rows) + 1
    assert not (tmp_path / "municipios_SP.bin").exists()


def test_uf_with_path_separator_is_rejected_before_writing(tmp_path: Path):
    records = [
        Municipio("001", "3550308", "Sao Paulo", "São Paulo", "SP"),
        Municipio("002", "1", "X", "X", "../x"),
    ]
    with pytest.raises(ValueError):
        export_partitions(records, tmp_path / "out")
    assert not (tmp_path / "out").exists()


def test_main_reports_invalid_uf(capsys, tmp_path: Path):
    src = tmp_path / "in.csv"
    src.write_text("001;3550308;Sao Paulo;São Paulo;S/P\n", encoding="utf-8")
    rc = main([str(src), "-o", str(tmp_path / "out")])
    assert rc == 2
    assert "invalid UF" in capsys.readouterr().err
