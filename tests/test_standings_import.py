from pickem.standings_import import parse_standings_number, parse_standings_paste


def test_parse_standings_number_drops_separators():
    assert parse_standings_number("1,024") == 1024
    assert parse_standings_number("-") is None


def test_parse_standings_paste():
    parsed = parse_standings_paste(
        "Rank\tDriver\tTeam\tPoints\tBehind\n"
        "1\tÁlex Palou\tChip Ganassi Racing\t656\t-\n"
        "2\tScott Dixon\tChip Ganassi Racing\t1,016\t-110\n"
        "T3\tWill Power\tTeam Penske\t-4\t\n"
        "Updated after Race 17\n"
    )

    assert [(r.rank, r.driver_name, r.points, r.line_number) for r in parsed.rows] == [
        (1, "Álex Palou", 656, 2),
        (2, "Scott Dixon", 1016, 3),
    ]
    assert parsed.ignored_line_count == 3
