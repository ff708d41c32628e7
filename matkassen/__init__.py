"""Matkassen food-parcel distribution core."""
