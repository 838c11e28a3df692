# circulation/models/__init__.py
from .category import Category
from .fine import Fine
from .item import Book, BookItem
from .loan import Loan
from .member import Member, Staff
from .reservation import Reservation

__all__ = ["Book", "BookItem", "Category", "Fine", "Loan", "Member", "Reservation", "Staff"]
