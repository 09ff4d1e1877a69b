"""
Configuration constants for the event script toolkit.

Defines the wire format, opcode numbering, opcode classification,
and other constants used throughout the reader and writer.
"""

# ============================================================
# Wire Format
# ============================================================

# Every pointer operand is a little-endian 32-bit file offset
POINTER_SIZE = 4

# Written in place of a pointer until its target offset is known.
# Easy to spot if it ever survives into a file.
POINTER_PLACEHOLDER = bytes([0xAB, 0xAB, 0xAB, 0xAB])

# Offset of the object table in stage files. Pointers at or below this
# point into the static header and never become blocks.
STAGE_HEADER_END = 0x48

# ============================================================
# Command Opcodes (GGTE01)
# ============================================================

CMD_ABORT = 1
CMD_RETURN = 2
CMD_GOTO = 3
CMD_SET = 4
CMD_IF = 5
CMD_ELIF = 6
CMD_ENDIF = 7
CMD_CASE = 8
CMD_EXPR = 9
CMD_WHILE = 10
CMD_BREAK = 11
CMD_RUN = 12
CMD_LIB = 13
CMD_PUSHBP = 14
CMD_POPBP = 15
CMD_SETSP = 16
CMD_ATTACH = 20
CMD_DETACH = 26
CMD_KILL = 30
CMD_PRINTF = 37
CMD_READ = 39
CMD_TIMER = 45

COMMAND_NAMES = {
    CMD_ABORT: "abort",
    CMD_RETURN: "return",
    CMD_GOTO: "goto",
    CMD_SET: "set",
    CMD_IF: "if",
    CMD_ELIF: "elif",
    CMD_ENDIF: "endif",
    CMD_CASE: "case",
    CMD_EXPR: "expr",
    CMD_WHILE: "while",
    CMD_BREAK: "break",
    CMD_RUN: "run",
    CMD_LIB: "lib",
    CMD_PUSHBP: "pushbp",
    CMD_POPBP: "popbp",
    CMD_SETSP: "setsp",
    CMD_ATTACH: "attach",
    CMD_DETACH: "detach",
    CMD_KILL: "kill",
    CMD_PRINTF: "printf",
    CMD_READ: "read",
    CMD_TIMER: "timer",
}

# Operand layout for commands that are a fixed list of operands.
# set, if-family, lib, printf and read are decoded by hand.
COMMAND_OPERANDS = {
    CMD_ABORT: (),
    CMD_RETURN: (),
    CMD_GOTO: ("ip",),
    CMD_ENDIF: ("ip",),
    CMD_BREAK: ("ip",),
    CMD_RUN: ("ip",),
    CMD_PUSHBP: (),
    CMD_POPBP: (),
    CMD_SETSP: ("expr",),
    CMD_ATTACH: ("expr", "expr"),
    CMD_DETACH: ("expr",),
    CMD_KILL: ("expr",),
    CMD_TIMER: ("expr", "expr"),
}

# ============================================================
# Expression Opcodes (GGTE01)
# ============================================================

OP_EQUAL = 0
OP_NOT_EQUAL = 1
OP_LESS = 2
OP_LESS_EQUAL = 3
OP_GREATER = 4
OP_GREATER_EQUAL = 5
OP_NOT = 6
OP_ADD = 7
OP_SUBTRACT = 8
OP_MULTIPLY = 9
OP_DIVIDE = 10
OP_MODULO = 11
OP_BIT_AND = 12
OP_BIT_OR = 13
OP_BIT_XOR = 14
OP_ADD_ASSIGN = 15
OP_SUBTRACT_ASSIGN = 16
OP_MULTIPLY_ASSIGN = 17
OP_DIVIDE_ASSIGN = 18
OP_MODULO_ASSIGN = 19
OP_BIT_AND_ASSIGN = 20
OP_BIT_OR_ASSIGN = 21
OP_BIT_XOR_ASSIGN = 22
OP_CONST_16 = 23
OP_CONST_32 = 24
OP_ADDRESS_OF = 25
OP_STACK = 26
OP_PARENT_STACK = 27
OP_FLAG = 28
OP_VARIABLE = 29
OP_RESULT_1 = 30
OP_RESULT_2 = 31
OP_PAD = 32
OP_BATTERY = 100
OP_MONEY = 101
OP_ITEM = 102
OP_ATC = 103
OP_RANK = 104
OP_EXP = 105
OP_LEVEL = 106
OP_HOLD = 107
OP_MAP = 108
OP_ACTOR_NAME = 109
OP_ITEM_NAME = 110
OP_TIME = 111
OP_CURRENT_SUIT = 112
OP_SCRAP = 113
OP_CURRENT_ATC = 114
OP_USE = 115
OP_HIT = 116
OP_STICKER_NAME = 117
OP_OBJ = 200
OP_RANDOM = 201
OP_SIN = 202
OP_COS = 203
OP_ARRAY_ELEMENT = 204

BINARY_OPS = set(range(OP_EQUAL, OP_NOT)) | set(range(OP_ADD, OP_BIT_XOR_ASSIGN + 1))

ASSIGN_OPS = set(range(OP_ADD_ASSIGN, OP_BIT_XOR_ASSIGN + 1))

# Operand layout for every expression that is not a binary op
EXPR_OPERANDS = {
    OP_NOT: ("expr",),
    OP_CONST_16: ("i16",),
    OP_CONST_32: ("i32",),
    OP_ADDRESS_OF: ("ip",),
    OP_STACK: ("u8",),
    OP_PARENT_STACK: ("u8",),
    OP_FLAG: ("expr",),
    OP_VARIABLE: ("expr",),
    OP_RESULT_1: (),
    OP_RESULT_2: (),
    OP_PAD: ("expr",),
    OP_BATTERY: ("expr",),
    OP_MONEY: (),
    OP_ITEM: ("expr",),
    OP_ATC: ("expr",),
    OP_RANK: (),
    OP_EXP: (),
    OP_LEVEL: (),
    OP_HOLD: (),
    OP_MAP: ("expr",),
    OP_ACTOR_NAME: ("expr",),
    OP_ITEM_NAME: ("expr",),
    OP_TIME: ("expr",),
    OP_CURRENT_SUIT: (),
    OP_SCRAP: (),
    OP_CURRENT_ATC: (),
    OP_USE: (),
    OP_HIT: (),
    OP_STICKER_NAME: ("expr",),
    OP_RANDOM: ("expr",),
    OP_SIN: ("expr",),
    OP_COS: ("expr",),
    OP_ARRAY_ELEMENT: ("expr", "expr", "expr"),
}

# ============================================================
# Sub-type Codes
# ============================================================

# obj() expression types
TYPE_ANIM = 204
TYPE_DIR = 205
TYPE_POS_X = 212
TYPE_POS_Y = 213
TYPE_POS_Z = 214
TYPE_BONE_X = 215
TYPE_BONE_Y = 216
TYPE_BONE_Z = 217
TYPE_DIR_TO = 218
TYPE_DISTANCE = 228

# read() command types
TYPE_SFX = 221

# obj() types whose operand is an object ID expression
OBJ_TYPES_OBJ = {TYPE_ANIM, TYPE_DIR, TYPE_POS_X, TYPE_POS_Y, TYPE_POS_Z}
# obj() types whose operand is the address of an ObjBone
OBJ_TYPES_BONE = {TYPE_BONE_X, TYPE_BONE_Y, TYPE_BONE_Z}
# obj() types whose operand is the address of an ObjPair
OBJ_TYPES_PAIR = {TYPE_DIR_TO, TYPE_DISTANCE}

READ_TYPES = {TYPE_ANIM, TYPE_SFX}

# ============================================================
# Command Classification
# ============================================================

# Always jump to their target; never fall through
GOTO_COMMANDS = {CMD_GOTO, CMD_ENDIF, CMD_BREAK}

# Fall through when the condition holds, branch otherwise
IF_COMMANDS = {CMD_IF, CMD_ELIF, CMD_CASE, CMD_EXPR, CMD_WHILE}

# End the block without any outgoing edge
TERMINAL_COMMANDS = {CMD_ABORT, CMD_RETURN}

CONTROL_FLOW_COMMANDS = GOTO_COMMANDS | IF_COMMANDS | TERMINAL_COMMANDS

# ============================================================
# Known Bad Data
# ============================================================

# stage06 (the bedroom) ships a block whose opcode at this offset reads as
# pos() when it should be dir(). Decoding it fails on an unrecognized
# expression opcode; the block is replaced with a lone abort().
KNOWN_BAD_CODE_OFFSET = 0x13CF3
KNOWN_BAD_EXPR_OPCODE = 45

# ============================================================
# Output Settings
# ============================================================

DEFAULT_OUTPUT_DIR = "tools/evscript/output"

OUTPUT_FILES = {
    "summary": "summary.json",
    "blocks": "blocks.json",
    "xrefs": "xrefs.json",
    "subroutines": "subroutines.json",
    "listing": "listing.txt",
}
