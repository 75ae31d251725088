#!/usr/bin/env python3
"""
stak.py: a small stack-based scripting language.

A tokenizer, a block resolver, and a linear virtual machine. No AST.

Architecture:
  - Tokenizer: split source on whitespace, classify literals, rewrite
    reserved words into their own token kinds
  - Resolver: one pass over the tokens, bake each `end` index into its `if`
  - VM: walk the resolved tokens with an explicit program counter against a
    value stack, a call stack, a built-in table and a function table

Token set:
  ('PUSH_STR',   s)           push string s
  ('PUSH_UINT',  n)           push unsigned integer n (u64)
  ('PUSH_INT',   n)           push signed integer n (i64)
  ('PUSH_FLOAT', x)           push float x
  ('PUSH_BOOL',  b)           push boolean b
  ('SYMBOL',     name)        call built-in or user function
  ('IF',         addr)        pop; jump to addr (its END) if falsy
  ('END',)                    no-op, closes an IF
  ('FDEF',       name, type)  register function, skip its body
  ('FEND',)                   return to caller
  ('COMMENT',)                skip to the next COMMENT

Values on the stack are tagged the same way:
  ('STRING', s)  ('UINT', n)  ('INT', n)  ('FLOAT', x)  ('BOOL', b)
"""

import argparse
import logging
import math
import re
import sys
import time
from decimal import Decimal

log = logging.getLogger('stak')

DIGITS         = '0123456789'
QUOTES         = '"\''
FUNC_SEPARATOR = '->'
RETURN_TYPES   = ('!', 'bool', 'string', 'number')
RESERVED       = ('if', 'end', 'fdef', 'fend', '#', 'true', 'false')

U64_MAX = 2**64 - 1
I64_MIN = -2**63
I64_MAX = 2**63 - 1

PUSH_TAGS = {
    'PUSH_STR':   'STRING',
    'PUSH_UINT':  'UINT',
    'PUSH_INT':   'INT',
    'PUSH_FLOAT': 'FLOAT',
    'PUSH_BOOL':  'BOOL',
}

INT_RE   = re.compile(r'[+-]?[0-9]+')
UINT_RE  = re.compile(r'\+?[0-9]+')
FLOAT_RE = re.compile(
    r'[+-]?(?:inf|infinity|nan|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:e[+-]?[0-9]+)?)',
    re.IGNORECASE)


# ── Errors ────────────────────────────────────────────────────────────────────

class StakError(Exception):
    kind = 'error'


class LexError(StakError):
    """A malformed literal. Renders a caret under the offending character."""
    kind = 'lexical error'
    message = 'Malformed literal'

    def __init__(self, literal: str, offset: int = 0, line: int = 0,
                 column: int = 0, message: str | None = None):
        self.literal = literal
        self.offset  = offset
        self.line    = line
        self.column  = column
        if message is not None:
            self.message = message
        super().__init__(self._render())

    def _render(self) -> str:
        where = f' (line {self.line}, col {self.column})' if self.line else ''
        return (f'{self.message}{where}:\n'
                f'\t{" " * self.offset}↓\n'
                f'\t{self.literal}')


class NonNumericChar(LexError):
    message = 'Non-numeric char found in number'

class MalformedFloat(LexError):
    message = 'Too many decimal points found in number'

class LoneNegativeSign(LexError):
    message = 'Only negative sign found in number'

class NumberOutOfRange(LexError):
    message = 'Number does not fit in 64 bits'

class UnterminatedString(LexError):
    message = 'Unterminated string'

class BadFunctionHeader(LexError):
    message = 'Malformed fdef header'


class StructureError(StakError):
    kind = 'structure error'

    def __init__(self, message: str, index: int):
        super().__init__(f'{message} (at token {index})')
        self.index = index


class StakRuntimeError(StakError):
    kind = 'runtime error'

    def __init__(self, message: str, position: int | None = None):
        super().__init__(message)
        self.message  = message
        self.position = position

    def __str__(self):
        if self.position is None:
            return self.message
        return f'{self.message} (at token {self.position})'


class EmptyStack(StakRuntimeError):
    def __init__(self, position: int | None = None):
        super().__init__('Empty stack during execution', position)

class UnknownWord(StakRuntimeError):
    def __init__(self, name: str, position: int | None = None):
        super().__init__(f'Unknown word: {name}', position)
        self.name = name

class InputParseError(StakRuntimeError):
    pass

class UnterminatedCall(StakRuntimeError):
    pass

class TypeMismatch(StakRuntimeError):
    pass


# ── Tokenizer ─────────────────────────────────────────────────────────────────

def _line_col(src: str, at: int) -> tuple:
    line = src.count('\n', 0, at) + 1
    col  = at - (src.rfind('\n', 0, at) + 1) + 1
    return line, col


def _scan(src: str) -> list:
    """
    Split source into (kind, text, offset) candidates.

    kind is 'STR' for a quoted literal, 'WORD' for a bare word and 'NOTE'
    for a word inside a `# ... #` comment. Comment text is never classified,
    so quotes inside a comment do not open a string. A string with no closing
    quote ends the scan as an 'OPEN' candidate.
    """
    words = []
    in_comment = False
    i, n = 0, len(src)
    while i < n:
        while i < n and src[i].isspace():
            i += 1
        if i >= n:
            break
        if src[i] in QUOTES and not in_comment:
            j = src.find(src[i], i + 1)
            if j < 0:
                eol = src.find('\n', i)
                words.append(('OPEN', src[i:eol if eol >= 0 else n], i))
                break
            words.append(('STR', src[i+1:j], i))
            i = j + 1
            continue
        j = i
        while j < n and not src[j].isspace():
            j += 1
        word = src[i:j]
        if word == '#':
            in_comment = not in_comment
            words.append(('WORD', word, i))
        else:
            words.append(('NOTE' if in_comment else 'WORD', word, i))
        i = j
    return words


def _is_numeric(word: str) -> bool:
    if word[0] in DIGITS:
        return True
    return word[0] == '-' and len(word) > 1 and word[1] in DIGITS


def parse_number(literal: str, line: int = 0, column: int = 0) -> tuple:
    """Classify a numeric literal into a PUSH_FLOAT, PUSH_INT or PUSH_UINT token."""
    if literal == '-':
        raise LoneNegativeSign(literal, 0, line, column)
    if not literal:
        raise NonNumericChar(literal, 0, line, column, message='Empty number')
    signed = literal.startswith('-')
    dot = -1
    for k in range(1 if signed else 0, len(literal)):
        c = literal[k]
        if c == '.':
            if dot >= 0:
                raise MalformedFloat(literal, k, line, column)
            dot = k
        elif c not in DIGITS:
            raise NonNumericChar(literal, k, line, column)
    if not any(c in DIGITS for c in literal):
        raise NonNumericChar(literal, dot, line, column,
                             message='No digits found in number')
    if dot >= 0:
        return ('PUSH_FLOAT', float(literal))
    value = int(literal)
    if signed:
        if value < I64_MIN:
            raise NumberOutOfRange(literal, 0, line, column)
        return ('PUSH_INT', value)
    if value > U64_MAX:
        raise NumberOutOfRange(literal, 0, line, column)
    return ('PUSH_UINT', value)


def _check_open(src: str, words: list, i: int):
    if i < len(words) and words[i][0] == 'OPEN':
        raise UnterminatedString(words[i][1], 0, *_line_col(src, words[i][2]))


def _fdef_header(src: str, words: list, i: int, at: int) -> tuple:
    """Read `NAME [-> TYPE]` after an fdef. Returns (token, next index)."""
    _check_open(src, words, i)
    if i >= len(words) or words[i][0] != 'WORD':
        raise BadFunctionHeader('fdef', 0, *_line_col(src, at),
                                message='fdef needs a function name')
    _, name, name_at = words[i]; i += 1
    if name in RESERVED or _is_numeric(name):
        raise BadFunctionHeader(name, 0, *_line_col(src, name_at),
                                message='Not a valid function name')
    rtype = '!'
    if i < len(words) and words[i][0] == 'WORD' and words[i][1] == FUNC_SEPARATOR:
        sep_at = words[i][2]; i += 1
        _check_open(src, words, i)
        if i >= len(words) or words[i][0] != 'WORD':
            raise BadFunctionHeader(FUNC_SEPARATOR, 0, *_line_col(src, sep_at),
                                    message='Return type expected after ->')
        _, rtype, type_at = words[i]; i += 1
        if rtype not in RETURN_TYPES:
            raise BadFunctionHeader(rtype, 0, *_line_col(src, type_at),
                                    message='Unknown return type')
    return ('FDEF', name, rtype), i


def tokenize(src: str) -> list:
    words = _scan(src)
    tokens = []
    i = 0
    while i < len(words):
        kind, word, at = words[i]; i += 1

        if kind == 'STR':
            tokens.append(('PUSH_STR', word))
        elif kind == 'OPEN':
            _check_open(src, words, i - 1)
        elif kind == 'NOTE':
            tokens.append(('SYMBOL', word))
        elif _is_numeric(word):
            tokens.append(parse_number(word, *_line_col(src, at)))
        elif word == 'if':
            tokens.append(('IF', 0))
        elif word == 'end':
            tokens.append(('END',))
        elif word == '#':
            tokens.append(('COMMENT',))
        elif word in ('true', 'false'):
            tokens.append(('PUSH_BOOL', word == 'true'))
        elif word == 'fdef':
            tok, i = _fdef_header(src, words, i, at)
            tokens.append(tok)
        elif word == 'fend':
            tokens.append(('FEND',))
        else:
            tokens.append(('SYMBOL', word))

    log.debug('tokenized %d words into %d tokens', len(words), len(tokens))
    return tokens


# ── Block resolver ────────────────────────────────────────────────────────────

def resolve(tokens: list) -> list:
    """
    Return a copy of tokens where every IF carries the index of its END.

    Open blocks are kept on a LIFO stack of (kind, index). FDEF/FEND share
    the stack so an if/end pair cannot straddle a function boundary.
    """
    program = list(tokens)
    ctrl = []
    for idx, tok in enumerate(program):
        op = tok[0]
        if op == 'IF':
            ctrl.append(('IF', idx))
        elif op == 'END':
            if not ctrl or ctrl[-1][0] != 'IF':
                raise StructureError('end without if', idx)
            _, ia = ctrl.pop()
            program[ia] = ('IF', idx)
        elif op == 'FDEF':
            if ctrl and ctrl[-1][0] == 'IF':
                raise StructureError(f'fdef {tok[1]} inside an if block: '
                                     'conditional function definitions are not supported', idx)
            if ctrl:
                raise StructureError(f'fdef {tok[1]} inside fdef: '
                                     'nested function definitions are not supported', idx)
            ctrl.append(('FDEF', idx))
        elif op == 'FEND':
            if not ctrl or ctrl[-1][0] != 'FDEF':
                raise StructureError('fend without fdef', idx)
            ctrl.pop()
    if ctrl:
        kind, idx = ctrl[-1]
        raise StructureError(f'{kind.lower()} is never closed', idx)

    log.debug('resolved %d tokens', len(program))
    return program


def compile_source(src: str) -> list:
    return resolve(tokenize(src))


def describe(tok: tuple) -> str:
    op = tok[0]
    if   op == 'PUSH_STR':  return repr(tok[1])
    elif op == 'PUSH_BOOL': return 'true' if tok[1] else 'false'
    elif op in PUSH_TAGS:   return str(tok[1])
    elif op == 'SYMBOL':    return tok[1]
    elif op == 'IF':        return f'if→{tok[1]}'
    elif op == 'END':       return 'end'
    elif op == 'FDEF':      return f'fdef {tok[1]} -> {tok[2]}'
    elif op == 'FEND':      return 'fend'
    elif op == 'COMMENT':   return '#'
    return repr(tok)


# ── Values ────────────────────────────────────────────────────────────────────

def as_float(value: tuple) -> float:
    tag, x = value
    if tag in ('UINT', 'INT', 'FLOAT'):
        return float(x)
    if tag == 'BOOL':
        return 1.0 if x else 0.0
    if tag == 'STRING':
        raise TypeMismatch(f'Expected a number, got string {x!r}')
    raise StakRuntimeError(f'Bad value: {tag}')


def truthy(value: tuple) -> bool:
    tag, x = value
    if tag in ('UINT', 'INT', 'FLOAT'):
        return x != 0
    if tag == 'STRING':
        return x != ''
    if tag == 'BOOL':
        return x
    raise StakRuntimeError(f'Bad value: {tag}')


def format_value(value: tuple) -> str:
    tag, x = value
    if tag == 'STRING':
        return x
    if tag in ('UINT', 'INT'):
        return str(x)
    if tag == 'BOOL':
        return 'true' if x else 'false'
    if tag == 'FLOAT':
        if math.isnan(x):
            return 'NaN'
        if math.isinf(x):
            return 'inf' if x > 0 else '-inf'
        # shortest round-trip digits, always positional: 1e16 -> 10000000000000000
        s = format(Decimal(repr(x)), 'f')
        if '.' in s:
            s = s.rstrip('0').rstrip('.')
        return s
    raise StakRuntimeError(f'Bad value: {tag}')


def _divide(b: float, a: float) -> float:
    if a != 0:
        return b / a
    if b == 0 or math.isnan(b):
        return math.nan
    return math.copysign(math.inf, b) * math.copysign(1.0, a)


# ── Interpreter ───────────────────────────────────────────────────────────────

class Stak:
    def __init__(self, program: list, stdin=None, stdout=None,
                 strict_calls: bool = True):
        self.program      = program
        self.position     = 0
        self.stack:  list = []
        self.call_stack: list = []
        self.functions: dict = {}
        self.builtins:  dict = {}
        self.stdin  = stdin  if stdin  is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.strict_calls = strict_calls
        self._define_builtins()

    # ── Stack ─────────────────────────────────────────────────────────────────

    def _pop(self) -> tuple:
        if not self.stack:
            raise EmptyStack()
        return self.stack.pop()

    def _push(self, value: tuple):
        self.stack.append(value)

    # ── I/O ───────────────────────────────────────────────────────────────────

    def _emit(self, s: str):
        self.stdout.write(s)

    def _read_line(self) -> str | None:
        try:
            line = self.stdin.readline()
        except UnicodeDecodeError as e:
            raise InputParseError(f'Input is not valid text: {e.reason}') from e
        if not line:
            return None
        if line.endswith('\n'):
            line = line[:-1]
            if line.endswith('\r'):
                line = line[:-1]
        return line

    def _read_number(self, pattern, what: str) -> str:
        line = self._read_line()
        if line is None:
            raise InputParseError(f'Expected {what} input, reached end of input')
        text = line.rstrip()
        if not pattern.fullmatch(text):
            raise InputParseError(f'Expected {what} input, got {text!r}')
        return text

    # ── Public ────────────────────────────────────────────────────────────────

    def run(self) -> list:
        try:
            self._exec()
        except StakRuntimeError as e:
            if e.position is None:
                e.position = self.position
            raise
        if self.call_stack:
            msg = f'Program ended inside a call ({len(self.call_stack)} pending returns)'
            if self.strict_calls:
                raise UnterminatedCall(msg, self.position)
            log.warning(msg)
        return self.stack

    # ── Inner interpreter ─────────────────────────────────────────────────────

    def _exec(self):
        program = self.program
        while self.position < len(program):
            tok = program[self.position]
            op  = tok[0]

            if op in PUSH_TAGS:
                self._push((PUSH_TAGS[op], tok[1]))

            elif op == 'SYMBOL':
                name = tok[1]
                fn = self.builtins.get(name)
                if fn is not None:
                    fn()
                elif name in self.functions:
                    self.call_stack.append(self.position)
                    self.position = self.functions[name]; continue
                else:
                    raise UnknownWord(name)

            elif op == 'IF':
                if not truthy(self._pop()):
                    self.position = tok[1]; continue

            elif op == 'END':
                pass

            elif op == 'FDEF':
                self._register(tok[1], self.position + 1)
                self.position = self._find(self.position, 'FEND') + 1; continue

            elif op == 'FEND':
                if not self.call_stack:
                    raise StakRuntimeError('fend reached outside a call')
                self.position = self.call_stack.pop() + 1; continue

            elif op == 'COMMENT':
                self.position = self._find(self.position, 'COMMENT', len(program) - 1)

            else:
                raise StakRuntimeError(f'Bad token: {op}')

            self.position += 1

    def _find(self, start: int, op: str, default: int | None = None) -> int:
        for idx in range(start + 1, len(self.program)):
            if self.program[idx][0] == op:
                return idx
        if default is not None:
            return default
        raise StakRuntimeError(f'No {op.lower()} after token {start}')

    def _register(self, name: str, entry: int):
        if name in self.builtins:
            log.warning('function %s is shadowed by the built-in of the same name', name)
        self.functions[name] = entry
        log.debug('registered function %s at %d', name, entry)

    # ── Built-ins ─────────────────────────────────────────────────────────────

    def _def(self, name, fn):
        self.builtins[name] = fn

    def _define_builtins(self):
        d = self

        # ── Stack manipulation ────────────────────────────────────────────────
        def w_dup():
            v = d._pop()
            d._push(v); d._push(v)
        d._def('drop', d._pop)
        d._def('dup',  w_dup)

        # ── Output ────────────────────────────────────────────────────────────
        d._def('print', lambda: d._emit(format_value(d._pop()) + '\n'))

        # ── Input ─────────────────────────────────────────────────────────────
        def w_get_line():
            line = d._read_line()
            d._push(('STRING', line if line is not None else ''))

        def w_get_int():
            n = int(d._read_number(INT_RE, 'integer'))
            if not I64_MIN <= n <= I64_MAX:
                raise InputParseError(f'Integer input out of range: {n}')
            d._push(('INT', n))

        def w_get_uint():
            n = int(d._read_number(UINT_RE, 'unsigned integer'))
            if n > U64_MAX:
                raise InputParseError(f'Unsigned input out of range: {n}')
            d._push(('UINT', n))

        def w_get_float():
            d._push(('FLOAT', float(d._read_number(FLOAT_RE, 'float'))))

        d._def('get_line',  w_get_line)
        d._def('get_int',   w_get_int)
        d._def('get_uint',  w_get_uint)
        d._def('get_float', w_get_float)

        # ── Arithmetic (always float) ─────────────────────────────────────────
        def _binop(op):
            def fn():
                a = as_float(d._pop()); b = as_float(d._pop())
                if   op == '+': d._push(('FLOAT', b + a))
                elif op == '-': d._push(('FLOAT', b - a))
                elif op == '*': d._push(('FLOAT', b * a))
                elif op == '/': d._push(('FLOAT', _divide(b, a)))
            return fn
        for op in ('+', '-', '*', '/'):
            d._def(op, _binop(op))

        # ── Comparison ────────────────────────────────────────────────────────
        def _cmp(op):
            def fn():
                a = as_float(d._pop()); b = as_float(d._pop())
                res = {'<': b < a, '>': b > a, '<=': b <= a, '>=': b >= a,
                       '==': b == a, '!=': b != a}[op]
                d._push(('BOOL', res))
            return fn
        for op in ('<', '>', '<=', '>=', '==', '!='):
            d._def(op, _cmp(op))


def run_source(src: str, stdin=None, stdout=None, strict_calls: bool = True) -> Stak:
    vm = Stak(compile_source(src), stdin=stdin, stdout=stdout,
              strict_calls=strict_calls)
    vm.run()
    return vm


# ── Command line ──────────────────────────────────────────────────────────────

def main(argv: list | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog='stak', description='Run a stak program.')
    parser.add_argument('path', help='Path to the source file to execute.')
    parser.add_argument('-t', '--time', action='store_true',
                        help='Report tokenize/resolve/execute timings on stderr.')
    parser.add_argument('-d', '--dump', action='store_true',
                        help='Print the resolved token sequence instead of running it.')
    parser.add_argument('--lenient-calls', action='store_true',
                        help='Do not fail when the program ends inside a call.')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging.')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(name)s: %(levelname)s: %(message)s')
    log.setLevel(logging.DEBUG if args.verbose else logging.NOTSET)

    try:
        with open(args.path, encoding='utf-8') as f:
            src = f.read()
    except OSError as e:
        print(f'stak: {args.path}: {e.strerror or e}', file=sys.stderr)
        return 1
    except UnicodeDecodeError:
        print(f'stak: {args.path}: invalid utf-8', file=sys.stderr)
        return 1

    timings = []
    try:
        t0 = time.perf_counter()
        tokens = tokenize(src)
        t1 = time.perf_counter()
        program = resolve(tokens)
        t2 = time.perf_counter()
        timings += [('tokenize', t1 - t0), ('resolve', t2 - t1)]

        if args.dump:
            for idx, tok in enumerate(program):
                print(f'{idx:4}: {describe(tok)}')
        else:
            vm = Stak(program, strict_calls=not args.lenient_calls)
            t3 = time.perf_counter()
            try:
                vm.run()
            finally:
                sys.stdout.flush()
            timings.append(('execute', time.perf_counter() - t3))
    except StakError as e:
        print(f'stak: {e.kind}: {e}', file=sys.stderr)
        return 1
    finally:
        if args.time:
            for phase, secs in timings:
                print(f'{phase:>9}: {secs * 1000:.3f} ms', file=sys.stderr)
    return 0


if __name__ == '__main__':
    sys.exit(main())
