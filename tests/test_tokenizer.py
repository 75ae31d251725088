import pytest

from stak import (
    BadFunctionHeader,
    LexError,
    LoneNegativeSign,
    MalformedFloat,
    NonNumericChar,
    NumberOutOfRange,
    UnterminatedString,
    parse_number,
    tokenize,
)


CASES = [
    # Literals
    ('0 1 2',           [('PUSH_UINT', 0), ('PUSH_UINT', 1), ('PUSH_UINT', 2)]),
    ('-5',              [('PUSH_INT', -5)]),
    ('3.5 -2.25',       [('PUSH_FLOAT', 3.5), ('PUSH_FLOAT', -2.25)]),
    ('1.',              [('PUSH_FLOAT', 1.0)]),
    ('true false',      [('PUSH_BOOL', True), ('PUSH_BOOL', False)]),
    ('"Hello :D"',      [('PUSH_STR', 'Hello :D')]),
    ("'it is'",         [('PUSH_STR', 'it is')]),
    ('"it\'s"',         [('PUSH_STR', "it's")]),
    ('""',              [('PUSH_STR', '')]),
    ('"a\nb"',          [('PUSH_STR', 'a\nb')]),

    # Sign vs operator
    ('3 1 -',           [('PUSH_UINT', 3), ('PUSH_UINT', 1), ('SYMBOL', '-')]),
    ('-x',              [('SYMBOL', '-x')]),
    ('-.5',             [('SYMBOL', '-.5')]),

    # Reserved words
    ('if end',          [('IF', 0), ('END',)]),
    ('# note #',        [('COMMENT',), ('SYMBOL', 'note'), ('COMMENT',)]),
    ('fdef square dup * fend',
     [('FDEF', 'square', '!'), ('SYMBOL', 'dup'), ('SYMBOL', '*'), ('FEND',)]),
    ('fdef half -> number 2 / fend',
     [('FDEF', 'half', 'number'), ('PUSH_UINT', 2), ('SYMBOL', '/'), ('FEND',)]),
    ('fdef greet -> ! "hi" print fend',
     [('FDEF', 'greet', '!'), ('PUSH_STR', 'hi'), ('SYMBOL', 'print'), ('FEND',)]),

    # Other symbols pass through
    ('dup drop print <= !=',
     [('SYMBOL', 'dup'), ('SYMBOL', 'drop'), ('SYMBOL', 'print'),
      ('SYMBOL', '<='), ('SYMBOL', '!=')]),

    # Whitespace
    ('',                []),
    ('  \n\t ',         []),
    ('1\n\n  2\t3',     [('PUSH_UINT', 1), ('PUSH_UINT', 2), ('PUSH_UINT', 3)]),
]


@pytest.mark.parametrize('src, expected', CASES)
def test_tokenize(src, expected):
    assert tokenize(src) == expected


def test_comment_text_is_not_classified():
    src = "# don't 12a if fend # 7"
    assert tokenize(src) == [
        ('COMMENT',),
        ('SYMBOL', "don't"), ('SYMBOL', '12a'), ('SYMBOL', 'if'), ('SYMBOL', 'fend'),
        ('COMMENT',),
        ('PUSH_UINT', 7),
    ]


def test_string_keeps_hash():
    assert tokenize('"# not a comment"') == [('PUSH_STR', '# not a comment')]


@pytest.mark.parametrize('literal, token', [
    ('0',                    ('PUSH_UINT', 0)),
    ('18446744073709551615', ('PUSH_UINT', 2**64 - 1)),
    ('-9223372036854775808', ('PUSH_INT', -2**63)),
    ('-0',                   ('PUSH_INT', 0)),
    ('0.5',                  ('PUSH_FLOAT', 0.5)),
    ('-10.0',                ('PUSH_FLOAT', -10.0)),
])
def test_parse_number(literal, token):
    assert parse_number(literal) == token


@pytest.mark.parametrize('src, error, offset', [
    ('12a3',   NonNumericChar, 2),
    ('1x',     NonNumericChar, 1),
    ('-5-3',   NonNumericChar, 2),
    ('1.2.3',  MalformedFloat, 3),
    ('5..',    MalformedFloat, 2),
    ('-1.2.',  MalformedFloat, 4),
])
def test_malformed_numbers(src, error, offset):
    with pytest.raises(error) as exc:
        tokenize(src)
    assert exc.value.offset == offset
    assert exc.value.literal == src


def test_lone_negative_sign():
    with pytest.raises(LoneNegativeSign):
        parse_number('-')


@pytest.mark.parametrize('literal, offset', [('', 0), ('.', 0), ('-.', 1)])
def test_number_without_digits(literal, offset):
    with pytest.raises(NonNumericChar) as exc:
        parse_number(literal)
    assert exc.value.offset == offset


@pytest.mark.parametrize('src', [
    '18446744073709551616',
    '-9223372036854775809',
])
def test_number_out_of_range(src):
    with pytest.raises(NumberOutOfRange):
        tokenize(src)


@pytest.mark.parametrize('src', ['"abc', "'abc", '"abc\'', '1 2 "open',
                                 'fdef "abc', 'fdef f -> "x'])
def test_unterminated_string(src):
    with pytest.raises(UnterminatedString):
        tokenize(src)


@pytest.mark.parametrize('src', [
    'fdef',
    'fdef 12 fend',
    'fdef if fend',
    'fdef "name" fend',
    'fdef f ->',
    'fdef f -> int 1 fend',
])
def test_bad_function_header(src):
    with pytest.raises(BadFunctionHeader):
        tokenize(src)


def test_error_location_and_caret():
    with pytest.raises(NonNumericChar) as exc:
        tokenize('1 2\n  3x')
    err = exc.value
    assert (err.line, err.column, err.offset) == (2, 3, 1)
    assert str(err) == ('Non-numeric char found in number (line 2, col 3):\n'
                        '\t ↓\n'
                        '\t3x')


def test_first_error_wins():
    with pytest.raises(NonNumericChar):
        tokenize('12a "open')


def test_lex_errors_share_a_base():
    for src in ('12a3', '1.2.3', '"abc', 'fdef'):
        with pytest.raises(LexError):
            tokenize(src)
