"""Built-ins, methods and operator semantics exercised through whole programs."""

import pytest

from backend.pyplay.errors import EvalError
from backend.pyplay.interpreter import Interpreter


def run(code):
    return Interpreter().execute(code)


def out1(expr):
    """Print one expression and return the single output line."""
    lines = run(f"print({expr})")
    assert len(lines) == 1
    return lines[0]


# --- operators -------------------------------------------------------------

def test_arithmetic():
    assert out1("6 / 2") == "3.0"
    assert out1("7 // 2") == "3"
    assert out1("-7 % 3") == "2"
    assert out1("2 ** 10") == "1024"
    assert out1("2 ** 3 ** 2") == "512"


def test_string_concat_with_number():
    assert out1("'n=' + 5") == "n=5"
    assert out1("1.5 + ' kg'") == "1.5 kg"


def test_repetition():
    assert out1("'ab' * 3") == "ababab"
    assert out1("'-' * -1 + '|'") == "|"
    assert out1("[0] * 3") == "[0, 0, 0]"


def test_boolean_operators():
    assert out1("0 or ''") == "False"
    assert out1("0 or 3") == "3"
    assert out1("1 and 0") == "0"
    assert out1("not []") == "True"


def test_loose_equality():
    assert out1("1 == '1'") == "True"
    assert out1("'2.0' == 2") == "True"
    assert out1("1 != '1'") == "False"
    assert out1("[1, 2] == [1, 2]") == "True"


def test_chained_comparison():
    assert out1("1 < 2 < 3") == "True"
    assert out1("1 < 3 < 2") == "False"


def test_membership():
    assert out1("'ell' in 'hello', 3 in [1, 2], 'k' in {'k': 1}, 1 in 5") == "True False True False"
    assert out1("'z' not in 'abc'") == "True"


def test_ternary():
    assert out1("'yes' if 2 > 1 else 'no'") == "yes"


def test_slicing():
    assert out1("'hello'[::-1]") == "olleh"
    assert out1("[1, 2, 3, 4, 5][1:4:2]") == "[2, 4]"
    assert out1("'hello'[-1]") == "o"


def test_lookup_failures_give_none():
    assert run("a = [1]\nprint(a[5])\nd = {}\nprint(d['x'])\nprint(undefined_name)") == [
        "None",
        "None",
        "None",
    ]


def test_dict_attribute_reads_key():
    assert run("d = {'name': 'Ada'}\nprint(d.name, d.age)") == ["Ada None"]


def test_collection_literals():
    assert out1("{3, 1, 3}") == "[3, 1]"
    assert out1("(1, 'a')") == "[1, 'a']"
    assert out1("{**{'a': 1}, 'b': 2}") == "{'a': 1, 'b': 2}"
    assert out1("[*'ab', 3]") == "['a', 'b', 3]"


def test_comprehensions():
    assert out1("[(a, b) for a in range(2) for b in range(2) if a != b]") == "[[0, 1], [1, 0]]"
    assert out1("{k: k * k for k in range(3)}") == "{0: 0, 1: 1, 2: 4}"
    assert out1("sum(x for x in range(4))") == "6"
    assert out1("{c for c in 'abca'}") == "['a', 'b', 'c']"


def test_fstrings():
    assert run("name = 'Ada'\nprint(f'{name!r} has {len(name)} letters')") == ["'Ada' has 3 letters"]
    assert out1("f\"{42:5d}|{'ab':>4}|{'ab':*<4}\"") == "   42|  ab|ab**"
    assert out1("f'{[1, 2]}'") == "[1, 2]"


# --- built-ins -------------------------------------------------------------

def test_len():
    assert out1("len('abc'), len([1]), len({'a': 1})") == "3 1 1"
    with pytest.raises(EvalError, match="has no len"):
        run("len(5)")


def test_conversions():
    assert out1("int('3.7'), int(3.9), int(' 12 ')") == "3 3 12"
    assert out1("float('2.5'), str(10) + '!', bool(''), bool([0])") == "2.5 10! False True"
    with pytest.raises(EvalError, match="invalid literal for int"):
        run("int('abc')")


def test_max_min_sum():
    assert out1("max([1, 5, 3]), min(4, 2, 8), sum([1, 2, 3])") == "5 2 6"
    assert out1("max([], default=0)") == "0"
    with pytest.raises(EvalError, match="empty sequence"):
        run("max([])")


def test_key_functions():
    code = (
        "def neg(v):\n"
        "    return -v\n"
        "print(max([1, 5, 3], key=neg))\n"
        "print(sorted(['bb', 'a', 'ccc'], key=len))\n"
    )
    assert run(code) == ["1", "['a', 'bb', 'ccc']"]


def test_range_forms():
    assert out1("range(3)") == "[0, 1, 2]"
    assert out1("range(5, 0, -2)") == "[5, 3, 1]"
    assert out1("range(3, 1)") == "[]"


def test_type_and_isinstance():
    assert run("print(type(1), type('a'), type(None))") == ["<class 'int'> <class 'str'> <class 'NoneType'>"]
    assert out1("isinstance(5, int), isinstance('a', (int, str)), isinstance([], dict)") == "True True False"
    assert out1("isinstance(True, int), isinstance((1, 2), 'tuple')") == "True True"


def test_sequence_builtins():
    assert out1("list('ab'), list({'k': 1})") == "['a', 'b'] ['k']"
    assert out1("set([1, 1, 2])") == "[1, 2]"
    assert out1("reversed([1, 2, 3])") == "[3, 2, 1]"
    assert out1("enumerate('ab')") == "[[0, 'a'], [1, 'b']]"
    assert out1("zip([1, 2, 3], 'ab')") == "[[1, 'a'], [2, 'b']]"


def test_number_builtins():
    assert out1("round(2.567, 2), round(2.5), abs(-3)") == "2.57 2 3"
    assert out1("chr(65), ord('A'), hex(255), bin(5), oct(8)") == "A 65 0xff 0b101 0o10"
    assert out1("pow(2, 5), divmod(10, 3)") == "32 [3, 1]"


def test_builtin_values_render():
    assert run("print(len)\ndef f():\n    pass\nprint(f)") == ["<built-in function len>", "<function f>"]


# --- methods ---------------------------------------------------------------

def test_string_methods():
    assert out1("'hello world'.title()") == "Hello World"
    assert out1("'a,b'.split(',')") == "['a', 'b']"
    assert out1("'-'.join(['x', 1])") == "x-1"
    assert out1("'  hi '.strip() + '|'") == "hi|"
    assert out1("'abc'.replace('b', 'B').upper()") == "ABC"
    assert out1("'7'.zfill(3), 'ab'.center(6, '*')") == "007 **ab**"
    assert out1("'Hi'.swapcase(), 'hi'.capitalize(), 'abc'.find('c')") == "hI Hi 2"
    assert out1("'hello'.startswith('he'), 'hello'.endswith(('x', 'lo'))") == "True True"
    assert out1("'{} + {} = {total}'.format(1, 2, total=3)") == "1 + 2 = 3"
    assert out1("'{0:.1f}|{1:>3}'.format(2.25, 'x')") == "2.2|  x"


def test_string_index_raises():
    with pytest.raises(EvalError, match="substring not found"):
        run("'abc'.index('z')")


def test_list_methods():
    code = (
        "xs = [3, 1]\n"
        "xs.append(2)\n"
        "xs.insert(0, 9)\n"
        "xs.extend([5])\n"
        "xs.remove(42)\n"
        "xs.remove(9)\n"
        "xs.sort()\n"
        "print(xs)\n"
        "xs.sort(reverse=True)\n"
        "print(xs, xs.index(5), xs.index(42), xs.count(1))\n"
        "print(xs.pop(), xs.pop(0), xs)\n"
        "ys = xs.copy()\n"
        "xs.clear()\n"
        "print(xs, ys, [].pop())\n"
    )
    assert run(code) == [
        "[1, 2, 3, 5]",
        "[5, 3, 2, 1] 0 -1 1",
        "1 5 [3, 2]",
        "[] [3, 2] None",
    ]


def test_dict_methods():
    code = (
        "d = {'a': 1}\n"
        "d.update({'b': 2}, c=3)\n"
        "print(d.keys(), d.values())\n"
        "print(d.items())\n"
        "print(d.get('z', 0), d.get('a'), d.pop('b'), d.pop('zz', 'none'))\n"
        "print(d)\n"
    )
    assert run(code) == [
        "['a', 'b', 'c'] [1, 2, 3]",
        "[['a', 1], ['b', 2], ['c', 3]]",
        "0 1 2 none",
        "{'a': 1, 'c': 3}",
    ]


def test_list_search_methods_use_loose_equality():
    code = (
        "xs = ['1', 2, '2']\n"
        "print(1 in xs, xs.index(1), xs.count(2), xs.index('2'))\n"
        "xs.remove(2.0)\n"
        "print(xs)\n"
    )
    assert run(code) == ["True 0 2 1", "['1', '2']"]


def test_dict_get_and_pop_with_unhashable_key_fall_back_to_default():
    code = (
        "d = {'a': 1}\n"
        "print(d.get([1]), d.get([1], 'dflt'), d.pop({}, 0))\n"
        "print(d)\n"
    )
    assert run(code) == ["None dflt 0", "{'a': 1}"]


def test_unknown_method_gives_none():
    assert out1("'abc'.nope()") == "None"
