"""
Kinds of values referenced by script code.

A ValueKind says what a pointer refers to: another event, an array of
some element type, a string, or one of the two object structs. The
reader uses the non-event kinds to type data blocks.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ElementType(Enum):
    """Array element types: (struct format, size in bytes)."""
    I8 = ("b", 1)
    U8 = ("B", 1)
    I16 = ("h", 2)
    U16 = ("H", 2)
    I32 = ("i", 4)
    U32 = ("I", 4)
    POINTER = ("i", 4, "pointer")

    @property
    def fmt(self) -> str:
        return self.value[0]

    @property
    def size(self) -> int:
        return self.value[1]


# Element-size constants used by array_element() expressions
_SIZE_CODES = {
    -4: ElementType.I32,
    -2: ElementType.I16,
    -1: ElementType.I8,
    1: ElementType.U8,
    2: ElementType.U16,
    4: ElementType.U32,
}


class KindTag(Enum):
    EVENT = "event"
    ARRAY = "array"
    STRING = "string"
    OBJ_BONE = "obj_bone"
    OBJ_PAIR = "obj_pair"


@dataclass(frozen=True)
class ArrayKind:
    element: ElementType
    # Only set for pointer arrays: what each element points to
    pointee: Optional["ValueKind"] = None

    @classmethod
    def from_size(cls, size: Optional[int]) -> "ArrayKind":
        """Map an element-size constant to an array kind (bytes if unknown)."""
        return cls(_SIZE_CODES.get(size, ElementType.U8))

    @classmethod
    def pointer(cls, pointee: "ValueKind") -> "ArrayKind":
        return cls(ElementType.POINTER, pointee)

    @property
    def element_size(self) -> int:
        return self.element.size

    @property
    def is_pointer(self) -> bool:
        return self.element == ElementType.POINTER

    def __str__(self) -> str:
        if self.is_pointer:
            return f"ptr[{self.pointee}]"
        return self.element.name.lower()


@dataclass(frozen=True)
class ValueKind:
    tag: KindTag
    array: Optional[ArrayKind] = None

    @classmethod
    def array_of(cls, kind: ArrayKind) -> "ValueKind":
        return cls(KindTag.ARRAY, kind)

    @property
    def is_array(self) -> bool:
        return self.tag == KindTag.ARRAY

    def to_dict(self) -> dict:
        d = {"tag": self.tag.value}
        if self.array is not None:
            d["element"] = self.array.element.name.lower()
            if self.array.pointee is not None:
                d["pointee"] = self.array.pointee.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ValueKind":
        tag = KindTag(d["tag"])
        if tag != KindTag.ARRAY:
            return cls(tag)
        element = ElementType[d["element"].upper()]
        pointee = cls.from_dict(d["pointee"]) if "pointee" in d else None
        return cls(tag, ArrayKind(element, pointee))

    def __str__(self) -> str:
        if self.is_array:
            return f"array<{self.array}>"
        return self.tag.value


EVENT = ValueKind(KindTag.EVENT)
STRING = ValueKind(KindTag.STRING)
OBJ_BONE = ValueKind(KindTag.OBJ_BONE)
OBJ_PAIR = ValueKind(KindTag.OBJ_PAIR)
# Data whose type nothing in the script reveals
BYTES = ValueKind.array_of(ArrayKind(ElementType.U8))


def merge_data_types(current: ValueKind, hint: ValueKind) -> Optional[ValueKind]:
    """
    Unify the known type of a data block with a new reference to it.

    Any 4-byte array can be upgraded to a pointer array, and a pointer
    array stays a pointer array when it is referenced again as a 4-byte
    integer array. Everything else must match exactly.

    Returns the unified kind, or None if the two kinds conflict.
    """
    if current == hint:
        return current
    if not (current.is_array and hint.is_array):
        return None
    if current.array.element_size == 4 and hint.array.is_pointer:
        return hint
    if current.array.is_pointer and hint.array.element_size == 4:
        return current
    return None
