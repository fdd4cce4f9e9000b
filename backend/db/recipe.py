import uuid
from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base


class Recipe(Base):
    """Recipe template - store independent list of ingredient requirements"""
    __tablename__ = "recipes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    groups = relationship(
        "RecipeIngredientGroup",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeIngredientGroup.sort_order",
    )
    ingredients = relationship(
        "RecipeIngredient",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeIngredient.sort_order",
    )


class RecipeIngredientGroup(Base):
    """Choice group presented to the buyer (e.g. sauce, topping)"""
    __tablename__ = "recipe_ingredient_groups"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipe_id = Column(UUID(as_uuid=True), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    # 'required_one' | 'required_all' | 'optional'
    selection_type = Column(Text, nullable=False, default="required_one")
    sort_order = Column(Integer, nullable=False, default=0)

    recipe = relationship("Recipe", back_populates="groups")
    ingredients = relationship("RecipeIngredient", back_populates="group")


class RecipeIngredient(Base):
    __tablename__ = "recipe_ingredients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipe_id = Column(UUID(as_uuid=True), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(UUID(as_uuid=True), ForeignKey("recipe_ingredient_groups.id", ondelete="SET NULL"), nullable=True, index=True)

    ingredient_name = Column(String, nullable=False)
    quantity = Column(Numeric(10, 3), nullable=False)  # per one unit of product
    unit = Column(String, nullable=False)
    supports_fractional = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=True)

    recipe = relationship("Recipe", back_populates="ingredients")
    group = relationship("RecipeIngredientGroup", back_populates="ingredients")
