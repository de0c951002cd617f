#
# Discovery of the native floating point format, and exact operations built on it
#
# (c) Neil Booth 2007-2021.  All rights reserved.
#

import logging
import math
import re
import threading
from enum import Enum, IntEnum
from functools import cmp_to_key
from typing import NamedTuple

import attr

__all__ = ('FloatFormat', 'native_format', 'FloatParts', 'FloatClass',
           'HexFormat', 'DefaultHexFormat', 'DigitsMod', 'SubnormalStrategy',
           'ZeroDisplay', 'ZeroStrategy',
           'ErrorKind', 'FloatError', 'NotANumber', 'NotFiniteNonzero',
           'ExponentOutOfRange', 'UnsupportedCapability', 'InvalidConfiguration',
           'MalformedInput',
           'mult_pow2', 'pow2', 'float_parts',
           'float_class', 'float_is_normal', 'float_is_subnormal', 'float_is_nzfinite',
           'float_is_zero', 'float_is_finite', 'float_is_infinite', 'float_is_nan',
           'signbit', 'float_sign', 'float_hex', 'hex_float',
           'float_id_cmp', 'float_id_key', 'copysign', 'nextafter', 'nextup', 'nextdown')


logger = logging.getLogger(__name__)


#
# Errors
#

class ErrorKind(IntEnum):
    NOT_A_NUMBER = 1
    NOT_FINITE_NONZERO = 2
    EXPONENT_OUT_OF_RANGE = 3
    UNSUPPORTED_CAPABILITY = 4
    INVALID_CONFIGURATION = 5
    MALFORMED_INPUT = 6


class FloatError(ArithmeticError):
    '''All exceptions raised by this module subclass from this.  The kind class attribute
    is the ErrorKind the exception represents.

    Errors are never recovered from internally; they propagate straight to the caller.
    '''

    kind = None


class NotANumber(FloatError):
    '''Raised when the sign of a NaN is needed.'''

    kind = ErrorKind.NOT_A_NUMBER


class NotFiniteNonzero(FloatError):
    '''Raised when decomposing a zero, an infinity or a NaN.'''

    kind = ErrorKind.NOT_FINITE_NONZERO


class ExponentOutOfRange(FloatError):
    '''Raised by pow2() for an exponent outside the finite exponent range.'''

    kind = ErrorKind.EXPONENT_OUT_OF_RANGE


class UnsupportedCapability(FloatError):
    '''Raised when an infinity or NaN is requested but the native format has none.'''

    kind = ErrorKind.UNSUPPORTED_CAPABILITY


class InvalidConfiguration(FloatError, ValueError):
    '''Raised for an unrecognised HexFormat setting, a negative digit count, or digit
    count constraints that cannot be satisfied together.'''

    kind = ErrorKind.INVALID_CONFIGURATION


class MalformedInput(FloatError, ValueError):
    '''Raised by hex_float() for text that is not a hexadecimal float.'''

    kind = ErrorKind.MALFORMED_INPUT


#
# Exact scaling by powers of two
#

# _powtwo[i] is 2^(2^i) and _powhalf[i] is 2^-(2^i).  The format probe extends both
# while it holds _probe_lock; they are read-only once it completes.
_powtwo = [2.0]
_powhalf = [0.5]
_probe_lock = threading.Lock()


def mult_pow2(value, exp):
    '''Return value multiplied by two to the power exp.

    The result is exact whenever it is representable; otherwise the usual floating point
    overflow and underflow behaviour applies.  Every intermediate product lies between
    value and the result in magnitude, so nothing is rounded that the result does not
    also round.  Zeroes of either sign and NaNs are returned unchanged.
    '''
    if value == 0 or value != value:
        return value

    table = _powtwo
    if exp < 0:
        table = _powhalf
        exp = -exp

    last = len(table) - 1
    index = 0
    while index != last and exp:
        if exp & 1:
            value *= table[index]
        exp >>= 1
        index += 1

    # What remains of exp counts multiples of the largest table entry.  Such exponents
    # always overflow or underflow, so stop once the value saturates.
    step = table[-1]
    while exp:
        scaled = value * step
        if scaled == value:
            break
        value = scaled
        exp -= 1

    return value


def pow2(exp):
    '''Return two to the power exp.  The result may be normal or subnormal.'''
    if not isinstance(exp, int):
        raise TypeError('pow2 requires an integer exponent')
    fmt = native_format
    if not fmt.min_finite_exp <= exp <= fmt.max_finite_exp:
        raise ExponentOutOfRange(f'exponent {exp} out of range '
                                 f'[{fmt.min_finite_exp}, {fmt.max_finite_exp}]')
    return mult_pow2(1.0, exp)


#
# Format discovery
#

class _Direction:
    '''One side of the exponent range explored by the probe: overflow uses exp_sign +1 and
    the powtwo table, underflow exp_sign -1 and the powhalf table.'''

    __slots__ = ('exp_sign', 'table', 'done')

    def __init__(self, exp_sign, table):
        self.exp_sign = exp_sign
        self.table = table
        self.done = False


def _grow_tables(directions):
    '''Square the last entry of each direction's table until scaling the square back by
    the same exponent no longer recovers the entry.  That is the point where squares
    saturate to infinity or vanish to zero.

    The directions are grown in step as mult_pow2 on one side uses the other's table.
    '''
    while not all(direction.done for direction in directions):
        for direction in directions:
            if direction.done:
                continue
            table = direction.table
            last = table[-1]
            square = last * last
            exp = direction.exp_sign * (1 << (len(table) - 1))
            if mult_pow2(square, -exp) == last:
                table.append(square)
            else:
                direction.done = True


def _refine_extremum(direction):
    '''Return an (exponent, power) pair for the most extreme power of two in the direction
    that survives a round trip through mult_pow2.  The table only brackets the boundary;
    the remaining exponent bits are found in decreasing order.'''
    exp_sign = direction.exp_sign
    exp = 1 << (len(direction.table) - 1)
    extremum = direction.table[-1]
    add_exp = exp >> 1
    while add_exp:
        candidate = mult_pow2(extremum, exp_sign * add_exp)
        if mult_pow2(candidate, -exp_sign * add_exp) == extremum:
            exp += add_exp
            extremum = candidate
        add_exp >>= 1
    return exp_sign * exp, extremum


def _probe_significand():
    '''Return (significand_bits, significand_step): the number of fraction bits, and the
    smallest eps such that 1 + eps is distinct from 1.'''
    index = 1
    while index < len(_powhalf):
        eps = _powhalf[index]
        if (1.0 + eps) - 1.0 != eps:
            break
        index += 1
    index -= 1

    bits = 1 << index
    step = _powhalf[index]
    while index:
        index -= 1
        eps = step * _powhalf[index]
        if (1.0 + eps) - 1.0 == eps:
            bits += 1 << index
            step = eps
    return bits, step


def _formats_negative(value):
    '''Return True if the text of value shows a leading minus sign.'''
    return f'{value:e}'.startswith('-')


def _probe_nan(pos_infinity):
    '''Return a NaN, or None if none of the ways of making one works on this host.'''
    zero = 0.0
    candidates = [
        ('log(-1)', lambda: math.log(-1.0)),
        ('0/0', lambda: zero / zero),
        ('nan literal', lambda: float('nan')),
    ]
    if pos_infinity is not None:
        candidates.insert(0, ('inf/inf', lambda: pos_infinity / pos_infinity))

    for description, formula in candidates:
        try:
            value = formula()
        except (ArithmeticError, ValueError) as e:
            logger.debug('NaN candidate %s raised %r', description, e)
            continue
        if value != value:
            return value
        logger.debug('NaN candidate %s gave %r', description, value)
    return None


@attr.s(slots=True, frozen=True, kw_only=True)
class FloatFormat:
    '''A description of the native floating point format.  Only instantiate through
    probe(); the module-level native_format holds the instance every other function uses.

    A finite non-zero value is a sign, an exponent and a significand.  For normal values
    the significand lies in [1, 2) and is a binary fraction of significand_bits bits after
    the point.  Subnormal values, where the format has them, have exponent min_normal_exp
    and a significand in (0, 1).
    '''

    # The number of fraction bits stored beyond the implicit integer bit, and the
    # difference between adjacent values in [1, 2], i.e. 2^-significand_bits
    significand_bits = attr.ib()
    significand_step = attr.ib()

    # The exponent range.  min_finite_exp equals min_normal_exp without subnormals.
    max_finite_exp = attr.ib()
    min_normal_exp = attr.ib()
    min_finite_exp = attr.ib()

    # 2^(max_finite_exp + 1) - 2^(max_finite_exp - significand_bits)
    max_finite = attr.ib()
    # 2^max_finite_exp
    max_finite_pow2 = attr.ib()
    # 2^min_normal_exp
    min_normal = attr.ib()
    # 2^min_finite_exp
    min_finite = attr.ib()
    # 2^(significand_bits + 1); every integer of smaller magnitude is representable
    max_integer = attr.ib()

    have_subnormal = attr.ib()
    have_signed_zero = attr.ib()
    have_infinite = attr.ib()
    have_nan = attr.ib()

    # Special values; None if the format lacks the capability
    pos_zero = attr.ib()
    neg_zero = attr.ib()
    pos_infinity = attr.ib()
    neg_infinity = attr.ib()
    nan = attr.ib()

    @property
    def frac_digits_bits(self):
        '''The number of hexadecimal fraction digits needed to show every stored bit.'''
        return (self.significand_bits + 3) >> 2

    @property
    def frac_sections(self):
        '''The number of 7-digit groups in which float_hex() extracts fraction digits.'''
        return (self.frac_digits_bits + 6) // 7

    @property
    def exp_digits_range(self):
        '''The number of decimal digits in the widest exponent float_hex() can show.'''
        min_exp = self.min_normal_exp - self.significand_bits
        max_exp = self.max_finite_exp + 1
        return max(len(str(-min_exp)), len(str(max_exp)))

    @classmethod
    def probe(cls):
        '''Discover the native format using only arithmetic, comparisons and text formatting.
        Capabilities that cannot be established are reported as absent; this never
        raises.'''
        with _probe_lock:
            return cls._probe()

    @classmethod
    def _probe(cls):
        underflow = _Direction(-1, _powhalf)
        overflow = _Direction(1, _powtwo)
        _grow_tables((underflow, overflow))
        min_finite_exp, min_finite = _refine_extremum(underflow)
        max_finite_exp, max_finite_pow2 = _refine_extremum(overflow)

        significand_bits, significand_step = _probe_significand()

        max_finite = max_finite_pow2 - mult_pow2(1.0, max_finite_exp - significand_bits - 1)
        max_finite += max_finite
        max_integer = mult_pow2(1.0, significand_bits + 1)

        # With subnormals the minimum exponent steps in fixed point, so 1.5 times the
        # smallest value rounds to it or to twice it
        test_value = min_finite * 1.5
        have_subnormal = test_value == min_finite or test_value == min_finite + min_finite
        if have_subnormal:
            min_normal_exp = min_finite_exp + significand_bits
            min_normal = mult_pow2(min_finite, significand_bits)
        else:
            min_normal_exp = min_finite_exp
            min_normal = min_finite

        have_signed_zero = _formats_negative(-0.0)
        pos_zero = neg_zero = None
        if have_signed_zero:
            pos_zero, neg_zero = 0.0, -0.0

        test_value = max_finite * max_finite
        have_infinite = test_value == test_value and test_value != max_finite
        pos_infinity = neg_infinity = None
        if have_infinite:
            pos_infinity, neg_infinity = test_value, -test_value

        nan = _probe_nan(pos_infinity)

        fmt = cls(significand_bits=significand_bits,
                  significand_step=significand_step,
                  max_finite_exp=max_finite_exp,
                  min_normal_exp=min_normal_exp,
                  min_finite_exp=min_finite_exp,
                  max_finite=max_finite,
                  max_finite_pow2=max_finite_pow2,
                  min_normal=min_normal,
                  min_finite=min_finite,
                  max_integer=max_integer,
                  have_subnormal=have_subnormal,
                  have_signed_zero=have_signed_zero,
                  have_infinite=have_infinite,
                  have_nan=nan is not None,
                  pos_zero=pos_zero,
                  neg_zero=neg_zero,
                  pos_infinity=pos_infinity,
                  neg_infinity=neg_infinity,
                  nan=nan)
        logger.debug('native float format: %r', fmt)
        return fmt


#
# Decomposition
#

class FloatParts(NamedTuple):
    '''A finite non-zero value split up.  sign is '+' or '-'.'''
    sign: str
    exponent: int
    significand: float


def float_parts(value):
    '''Divide a finite non-zero value into sign, exponent and significand.  The significand
    lies in [1, 2) for normal values and in (0, 1) for subnormals, whose exponent is
    min_normal_exp.  All scaling is by exact powers of two.
    '''
    if not float_is_nzfinite(value):
        raise NotFiniteNonzero(f'{value!r} is not finite and non-zero')

    fmt = native_format
    sign = '+'
    if value < 0:
        sign = '-'
        value = -value

    if fmt.have_subnormal and value < fmt.min_normal:
        return FloatParts(sign, fmt.min_normal_exp, mult_pow2(value, -fmt.min_normal_exp))

    # Binary search on the exponent, most significant bit first
    exp = 0
    if value < 1.0:
        for index in reversed(range(len(_powhalf))):
            exp <<= 1
            if value < _powhalf[index]:
                exp |= 1
                value = mult_pow2(value, 1 << index)
        value *= 2.0
        exp = -1 - exp
    elif value >= 2.0:
        for index in reversed(range(len(_powtwo))):
            exp <<= 1
            if value >= _powtwo[index]:
                exp |= 1
                value = mult_pow2(value, -(1 << index))

    return FloatParts(sign, exp, value)


#
# Classification
#

class FloatClass(Enum):
    NORMAL = 'NORMAL'
    SUBNORMAL = 'SUBNORMAL'
    ZERO = 'ZERO'
    INFINITE = 'INFINITE'
    NAN = 'NAN'


def float_class(value):
    '''Return the FloatClass of value.'''
    fmt = native_format
    if value == 0:
        return FloatClass.ZERO
    if value != value:
        return FloatClass.NAN
    if value < 0:
        value = -value
    if fmt.have_infinite and value == fmt.pos_infinity:
        return FloatClass.INFINITE
    if fmt.have_subnormal and value < fmt.min_normal:
        return FloatClass.SUBNORMAL
    return FloatClass.NORMAL


def float_is_normal(value):
    return float_class(value) is FloatClass.NORMAL


def float_is_subnormal(value):
    return float_class(value) is FloatClass.SUBNORMAL


def float_is_nzfinite(value):
    '''Return True if value is normal or subnormal.'''
    return value != 0 and value == value and not float_is_infinite(value)


def float_is_zero(value):
    return value == 0


def float_is_finite(value):
    return value == value and not float_is_infinite(value)


def float_is_infinite(value):
    '''Return True if value is an infinity.  Always False if the format has none.'''
    fmt = native_format
    if not fmt.have_infinite:
        return False
    return value == fmt.pos_infinity or value == fmt.neg_infinity


def float_is_nan(value):
    return value != value


def signbit(value):
    '''Return 1 if value is negative, including a negative zero, otherwise 0.  The result
    for a NaN is unpredictable.'''
    if value < 0:
        return 1
    if value == 0 and native_format.have_signed_zero and _formats_negative(value):
        return 1
    return 0


def float_sign(value):
    '''Return '+' or '-' according to the sign of value.  An unsigned zero is positive.'''
    if value != value:
        raise NotANumber('cannot get the sign of a NaN')
    return '-' if signbit(value) else '+'


#
# Hexadecimal output configuration
#

class DigitsMod(IntEnum):
    '''How a bound computed from the format or the value modifies a requested number of
    digits.'''
    IGNORE = 0
    AT_LEAST = 1
    AT_MOST = 2
    EXACTLY = 3


class SubnormalStrategy(IntEnum):
    # Significand in (0, 1) with exponent min_normal_exp, as stored
    AS_STORED = 0
    # Significand in [1, 2) with a lower exponent, as for normal values
    NORMALIZED = 1


class ZeroDisplay(IntEnum):
    FIXED_STRING = 0
    AS_SUBNORMAL = 1
    AT_EXPONENT = 2


# Setting names accepted besides the enum member names
_SETTING_ALIASES = {
    'ATLEAST': DigitsMod.AT_LEAST,
    'ATMOST': DigitsMod.AT_MOST,
    'SUBNORMAL': SubnormalStrategy.AS_STORED,
    'NORMAL': SubnormalStrategy.NORMALIZED,
}

ZERO_EXPONENT_REGEX = re.compile('EXPONENT=([-+]?[0-9]+)', re.ASCII)


def _enum_setting(enum_class):
    '''Return an attrs converter taking a member of enum_class or its name.'''
    def convert(value):
        if isinstance(value, enum_class):
            return value
        if isinstance(value, str):
            alias = _SETTING_ALIASES.get(value)
            if isinstance(alias, enum_class):
                return alias
            if value in enum_class.__members__:
                return enum_class[value]
        raise InvalidConfiguration(f'unrecognised {enum_class.__name__} setting {value!r}')
    return convert


def _non_negative_count(_instance, attribute, value):
    if not isinstance(value, int) or value < 0:
        raise InvalidConfiguration(f'{attribute.name} must be a non-negative integer, '
                                   f'not {value!r}')


def _exp_digits_mod(_instance, attribute, value):
    if value not in (DigitsMod.IGNORE, DigitsMod.AT_LEAST):
        raise InvalidConfiguration(f'{attribute.name} must be IGNORE or AT_LEAST')


@attr.s(slots=True, frozen=True)
class ZeroStrategy:
    '''How float_hex() shows zeroes: as a fixed string after the sign, or with a zero
    significand at either the minimum normal exponent or a given exponent.  Build
    instances with the class methods.'''

    kind = attr.ib(converter=_enum_setting(ZeroDisplay))
    string = attr.ib(default=None)
    exponent = attr.ib(default=None)

    def __attrs_post_init__(self):
        if self.kind == ZeroDisplay.FIXED_STRING and not isinstance(self.string, str):
            raise InvalidConfiguration('a fixed zero string must be a string')
        if self.kind == ZeroDisplay.AT_EXPONENT and (
                not isinstance(self.exponent, int) or isinstance(self.exponent, bool)):
            raise InvalidConfiguration('a zero exponent must be an integer')

    @classmethod
    def fixed_string(cls, string):
        return cls(ZeroDisplay.FIXED_STRING, string=string)

    @classmethod
    def as_subnormal(cls):
        return cls(ZeroDisplay.AS_SUBNORMAL)

    @classmethod
    def at_exponent(cls, exponent):
        return cls(ZeroDisplay.AT_EXPONENT, exponent=exponent)

    @classmethod
    def from_string(cls, text):
        '''Parse one of "STRING=<text>", "SUBNORMAL" or "EXPONENT=<integer>".'''
        if text.startswith('STRING='):
            return cls.fixed_string(text[len('STRING='):])
        if text == 'SUBNORMAL':
            return cls.as_subnormal()
        match = ZERO_EXPONENT_REGEX.fullmatch(text)
        if match:
            return cls.at_exponent(int(match.group(1)))
        raise InvalidConfiguration(f'unrecognised zero strategy {text!r}')


def _zero_strategy(value):
    if isinstance(value, ZeroStrategy):
        return value
    if isinstance(value, str):
        return ZeroStrategy.from_string(value)
    raise InvalidConfiguration(f'unrecognised zero strategy {value!r}')


@attr.s(slots=True, frozen=True, kw_only=True)
class HexFormat:
    '''Controls the output of float_hex().  Instances are immutable; derive variants with
    attr.evolve().

    Enumerated settings accept the enum member or its name.
    '''

    # The minimum number of digits in the exponent, unless exp_digits_range_mod requires
    # more.  The exponent is always shown in full.
    exp_digits = attr.ib(default=0, validator=_non_negative_count)
    # If AT_LEAST, show at least as many exponent digits as the widest exponent of any
    # normal or subnormal value needs.  IGNORE or AT_LEAST only.
    exp_digits_range_mod = attr.ib(default=DigitsMod.IGNORE,
                                   converter=_enum_setting(DigitsMod),
                                   validator=_exp_digits_mod)
    # The strings preceding negative and non-negative exponents
    exp_neg_sign = attr.ib(default='-')
    exp_pos_sign = attr.ib(default='+')
    # The number of fraction digits to show, unless modified by the two settings below
    frac_digits = attr.ib(default=0, validator=_non_negative_count)
    # Modifies the fraction digit count by the number of digits needed to show every bit
    # the format stores
    frac_digits_bits_mod = attr.ib(default=DigitsMod.IGNORE, converter=_enum_setting(DigitsMod))
    # Modifies the fraction digit count by the number of digits needed to show the value
    # exactly
    frac_digits_value_mod = attr.ib(default=DigitsMod.AT_LEAST,
                                    converter=_enum_setting(DigitsMod))
    # The strings output for an infinite magnitude (after the sign) and for NaNs
    infinite_string = attr.ib(default='inf')
    nan_string = attr.ib(default='nan')
    # The strings preceding negative values (including negative zero) and others
    neg_sign = attr.ib(default='-')
    pos_sign = attr.ib(default='+')
    subnormal_strategy = attr.ib(default=SubnormalStrategy.AS_STORED,
                                 converter=_enum_setting(SubnormalStrategy))
    zero_strategy = attr.ib(default=ZeroStrategy.fixed_string('0.0'), converter=_zero_strategy)

    def leading_sign(self, sign):
        '''Return the string preceding a value of sign '+' or '-'.'''
        return self.neg_sign if sign == '-' else self.pos_sign

    def exponent_str(self, exponent):
        '''Return the formatted exponent.'''
        sign = self.exp_neg_sign if exponent < 0 else self.exp_pos_sign
        exp_digits = self.exp_digits
        if self.exp_digits_range_mod == DigitsMod.AT_LEAST:
            exp_digits = max(exp_digits, native_format.exp_digits_range)
        return sign + str(abs(exponent)).zfill(exp_digits)

    def format_infinite(self, sign_string):
        return sign_string + self.infinite_string

    def digit_count(self, value_digits):
        '''Return how many hexadecimal digits, counting the one before the point, to show of
        a significand that needs value_digits to be shown exactly.'''
        count = 1 + self.frac_digits
        bits_digits = 1 + native_format.frac_digits_bits
        min_digits = 1
        max_digits = count + native_format.frac_digits_bits
        for mod, bound in ((self.frac_digits_bits_mod, bits_digits),
                           (self.frac_digits_value_mod, value_digits)):
            if mod in (DigitsMod.AT_LEAST, DigitsMod.EXACTLY):
                min_digits = max(min_digits, bound)
            if mod in (DigitsMod.AT_MOST, DigitsMod.EXACTLY):
                max_digits = min(max_digits, bound)
        if max_digits < min_digits:
            raise InvalidConfiguration(f'incompatible digit count constraints: at least '
                                       f'{min_digits} and at most {max_digits}')
        return min(max(count, min_digits), max_digits)


DefaultHexFormat = HexFormat()


#
# Hexadecimal conversions
#

# When precision is lost these indicate what fraction of the LSB the lost bits
# represented.  It essentially combines the roles of 'guard' and 'sticky' bits.
LF_EXACTLY_ZERO = 0           # 000000
LF_LESS_THAN_HALF = 1         # 0xxxxx  x's not all zero
LF_EXACTLY_HALF = 2           # 100000
LF_MORE_THAN_HALF = 3         # 1xxxxx  x's not all zero

# Decoded significands are reassembled from limbs of this many bits
LIMB_BITS = 28
LIMB_MASK = (1 << LIMB_BITS) - 1
# Exponents longer than this many decimal digits overflow or underflow regardless
MAX_EXPONENT_DIGITS = 20

HEX_FLOAT_REGEX = re.compile(
    # sign[opt]
    '([-+]?)(?:'
    # 0x hex-integer (. hex-fraction)[opt] (p sign[opt] dec-exponent)[opt]
    '0x([0-9a-f]+)(?:\\.([0-9a-f]+))?(?:p([-+]?[0-9]+))?|'
    # zero, with an optional point and zeroes
    '(0(?:\\.0+)?)|'
    # infinity
    '(inf)|'
    # NaN
    '(nan))',
    re.ASCII | re.IGNORECASE
)


def lost_bits_from_rshift(significand, bits):
    '''Return what the lost bits would be were the significand shifted right the given number
    of bits (negative is a left shift).
    '''
    if bits <= 0:
        return LF_EXACTLY_ZERO
    # Prevent over-large shifts consuming memory
    bits = min(bits, significand.bit_length() + 2)
    bit_mask = 1 << (bits - 1)
    first_bit = bool(significand & bit_mask)
    second_bit = bool(significand & (bit_mask - 1))
    return first_bit * 2 + second_bit


def shift_right(significand, bits):
    '''Return the significand shifted right a given number of bits (left if bits is negative),
    and the fraction that is lost doing so.
    '''
    if bits <= 0:
        result = significand << -bits
    else:
        result = significand >> bits

    return result, lost_bits_from_rshift(significand, bits)


def lost_fraction_from_hex(digits):
    '''Return the fraction of a hex digit's unit that a string of following digits
    represents.'''
    if digits[0] >= '8':
        return LF_EXACTLY_HALF if digits.rstrip('0') == '8' else LF_MORE_THAN_HALF
    return LF_LESS_THAN_HALF if digits.strip('0') else LF_EXACTLY_ZERO


def rounds_up(lost_fraction, is_odd):
    '''Return True if rounding to nearest, ties to even, increments a truncated result.

    is_odd indicates if the LSB of the truncated result is set.
    '''
    if lost_fraction == LF_EXACTLY_HALF:
        return bool(is_odd)
    return lost_fraction == LF_MORE_THAN_HALF


def _hex_significand(significand):
    '''Return the hex digits of a significand in [0, 2), the point implied after the first,
    with trailing zeroes stripped.'''
    leading = int(significand)
    fraction = significand - leading
    parts = [str(leading)]
    # Seven digits at a time keeps each product exact
    for _ in range(native_format.frac_sections):
        fraction *= 268435456.0
        section = int(fraction)
        parts.append(f'{section:07x}')
        fraction -= section
    digits = ''.join(parts)
    return digits[0] + digits[1:].rstrip('0')


def _round_hex_digits(digits, count, exponent):
    '''Round a digit string to count digits, ties to even.  Return a (digits, exponent)
    pair; a carry out of the leading digit moves into the exponent.'''
    kept = digits[:count]
    if rounds_up(lost_fraction_from_hex(digits[count:]), int(kept[-1], 16) & 1):
        kept = f'{int(kept, 16) + 1:0{count}x}'
        if kept[0] == '2':
            kept = '1' + kept[1:]
            exponent += 1
    return kept, exponent


def float_hex(value, hex_format=None):
    '''Return text stating the exact value in hexadecimal, controlled by hex_format (by
    default DefaultHexFormat).

    Finite values are output as [sign]0x<digit>.<digits>p<exponent sign><exponent> where
    the exponent is decimal; the point is omitted if there are no fraction digits.
    Infinities output their sign followed by infinite_string, NaNs output nan_string, and
    zeroes follow zero_strategy.
    '''
    hex_format = hex_format or DefaultHexFormat
    fmt = native_format

    if value != value:
        return hex_format.nan_string
    if fmt.have_infinite:
        if value == fmt.pos_infinity:
            return hex_format.format_infinite(hex_format.pos_sign)
        if value == fmt.neg_infinity:
            return hex_format.format_infinite(hex_format.neg_sign)

    if value == 0:
        sign = float_sign(value)
        zero = hex_format.zero_strategy
        if zero.kind == ZeroDisplay.FIXED_STRING:
            return hex_format.leading_sign(sign) + zero.string
        if zero.kind == ZeroDisplay.AS_SUBNORMAL:
            exponent = fmt.min_normal_exp
        else:
            exponent = zero.exponent
        significand = 0.0
    else:
        sign, exponent, significand = float_parts(value)
        if (significand < 1.0
                and hex_format.subnormal_strategy == SubnormalStrategy.NORMALIZED):
            _, extra_exp, significand = float_parts(significand)
            exponent += extra_exp

    digits = _hex_significand(significand)
    count = hex_format.digit_count(len(digits))
    if count > len(digits):
        digits += '0' * (count - len(digits))
    elif count < len(digits):
        digits, exponent = _round_hex_digits(digits, count, exponent)

    if len(digits) > 1:
        digits = digits[0] + '.' + digits[1:]
    return f'{hex_format.leading_sign(sign)}0x{digits}p{hex_format.exponent_str(exponent)}'


def _zero(negative):
    fmt = native_format
    if fmt.have_signed_zero:
        return fmt.neg_zero if negative else fmt.pos_zero
    return 0.0


def _overflow_value(negative):
    fmt = native_format
    if fmt.have_infinite:
        return fmt.neg_infinity if negative else fmt.pos_infinity
    return -fmt.max_finite if negative else fmt.max_finite


def _read_exponent(text):
    '''Return the integer value of a decimal exponent, saturating absurdly long ones.'''
    if not text:
        return 0
    magnitude = text.lstrip('+-').lstrip('0')
    if len(magnitude) > MAX_EXPONENT_DIGITS:
        magnitude = '1' + '0' * MAX_EXPONENT_DIGITS
    exponent = int(magnitude or '0')
    return -exponent if text[0] == '-' else exponent


def _round_to_native(negative, exponent, significand):
    '''Return (-1)^negative * significand * 2^exponent rounded to the native format, ties
    to even.  significand is a non-negative integer.'''
    fmt = native_format
    if significand == 0:
        return _zero(negative)

    # Exponent of the leading bit
    top_exp = exponent + significand.bit_length() - 1
    if top_exp > fmt.max_finite_exp:
        return _overflow_value(negative)
    # Less than half the smallest value
    if top_exp < fmt.min_finite_exp - 1:
        return _zero(negative)

    # The exponent of the least significant bit the result can hold; subnormals hold
    # fewer bits
    lsb_exp = top_exp - fmt.significand_bits
    if fmt.have_subnormal:
        lsb_exp = max(lsb_exp, fmt.min_finite_exp)

    significand, lost_fraction = shift_right(significand, lsb_exp - exponent)
    if rounds_up(lost_fraction, significand & 1):
        significand += 1
    if significand == 0:
        return _zero(negative)

    # Rounding can carry into a new leading bit
    top_exp = lsb_exp + significand.bit_length() - 1
    if top_exp > fmt.max_finite_exp:
        return _overflow_value(negative)
    # Without subnormals everything below min_normal flushes to zero, even values
    # nearer min_normal
    if top_exp < fmt.min_normal_exp and not fmt.have_subnormal:
        return _zero(negative)

    # Each limb, and each partial sum, is a piece of the representable result and so
    # exact
    value = 0.0
    limb_exp = lsb_exp
    while significand:
        limb = significand & LIMB_MASK
        if limb:
            value += mult_pow2(float(limb), limb_exp)
        significand >>= LIMB_BITS
        limb_exp += LIMB_BITS

    return -value if negative else value


def hex_float(text):
    '''Return the value of a hexadecimal float string, rounded to nearest with ties to
    even.

    Accepted, case-insensitively, are [sign]0x<hex digits>[.<hex digits>][p[sign]<decimal
    digits>], a zero written [sign]0[.0...], and [sign]inf and [sign]nan.  Values too large
    become infinite (the largest finite value if the format has no infinities) and values
    too small become zero, keeping their sign.
    '''
    if not isinstance(text, str):
        raise MalformedInput(f'hex_float requires a string, not {type(text).__name__}')
    match = HEX_FLOAT_REGEX.fullmatch(text)
    if match is None:
        raise MalformedInput(f'invalid hexadecimal float: {text!r}')

    sign, int_digits, frac_digits, exp_digits, zero, inf, nan = match.groups()
    fmt = native_format
    negative = sign == '-'

    if nan is not None:
        if not fmt.have_nan:
            raise UnsupportedCapability('the native float format has no NaN')
        return fmt.nan
    if inf is not None:
        if not fmt.have_infinite:
            raise UnsupportedCapability('the native float format has no infinities')
        return _overflow_value(negative)
    if zero is not None:
        return _zero(negative)

    frac_digits = frac_digits or ''
    significand = int((int_digits + frac_digits).lstrip('0') or '0', 16)
    exponent = _read_exponent(exp_digits) - 4 * len(frac_digits)
    return _round_to_native(negative, exponent, significand)


#
# Total ordering
#

def float_id_cmp(lhs, rhs):
    '''Compare two values for identity, returning -1, 0 or 1.

    This is a total order: NaNs are equal to each other and below everything else, and a
    negative zero is below a positive or unsigned zero.  Otherwise values compare
    numerically.
    '''
    lhs_nan = lhs != lhs
    rhs_nan = rhs != rhs
    if lhs_nan or rhs_nan:
        return int(rhs_nan) - int(lhs_nan)
    if lhs == 0 and rhs == 0:
        return signbit(rhs) - signbit(lhs)
    return (lhs > rhs) - (lhs < rhs)


float_id_key = cmp_to_key(float_id_cmp)


#
# Adjacent values
#

def copysign(value, sign_from):
    '''Return a value with the magnitude of value and the sign of sign_from.  A NaN value is
    returned unchanged; an unsigned zero sign_from counts as positive.'''
    if value != value:
        return value
    if float_sign(value) != float_sign(sign_from):
        value = -value
    return value


def nextafter(value, direction):
    '''Return the representable value adjacent to value in the direction of direction.

    A NaN argument is returned.  If the two are numerically equal value is returned.
    Infinities are adjacent to the largest finite values, and zero, counted once even
    when signed, is adjacent to the smallest finite values.  A zero result has the sign of
    value.
    '''
    fmt = native_format
    if value != value:
        return value
    if direction != direction:
        return direction
    if value == direction:
        return value
    if value == 0:
        return copysign(fmt.min_finite, direction)
    if float_is_infinite(value):
        return copysign(fmt.max_finite, value)

    sign, exponent, significand = float_parts(value)
    if float_sign(direction) == sign and abs(direction) > abs(value):
        significand += fmt.significand_step
        if significand == 2.0:
            if exponent == fmt.max_finite_exp:
                return direction
            significand = 1.0
            exponent += 1
    else:
        if significand == 1.0:
            if exponent != fmt.min_normal_exp:
                significand = 2.0
                exponent -= 1
            elif not fmt.have_subnormal:
                return copysign(_zero(False), value)
        significand -= fmt.significand_step

    return copysign(mult_pow2(significand, exponent), value)


def nextup(value):
    '''Return the least value greater than value.'''
    fmt = native_format
    return nextafter(value, fmt.pos_infinity if fmt.have_infinite else fmt.max_finite)


def nextdown(value):
    '''Return the greatest value less than value.'''
    fmt = native_format
    return nextafter(value, fmt.neg_infinity if fmt.have_infinite else -fmt.max_finite)


#
# The native format, probed once on import.  The import lock serializes this so it is
# complete before any other thread can call the functions above.
#

native_format = FloatFormat.probe()
