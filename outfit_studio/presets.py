"""Static catalog of preset outfits.

Presets are plain outfit text; the pipeline treats them exactly like typed input.
"""

from pydantic import BaseModel

from .models import TextIntent


class OutfitPreset(BaseModel):
    id: str
    name: str
    prompt: str
    category: str  # casual, fantasy, formal, occupation, costume


CATEGORY_LABELS = {
    "casual": "Casual",
    "fantasy": "Fantasy",
    "formal": "Formal / Traditional",
    "occupation": "Occupation",
    "costume": "Costume",
}

OUTFIT_PRESETS = [
    # Casual
    OutfitPreset(id="1", name="Casual hoodie", prompt="oversized casual hoodie and denim shorts, streetwear style", category="casual"),
    OutfitPreset(id="2", name="Summer dress", prompt="white floral summer sundress, straw hat", category="casual"),
    OutfitPreset(id="3", name="Winter coat", prompt="beige wool trench coat, red scarf, winter fashion", category="casual"),
    OutfitPreset(id="4", name="Sportswear", prompt="fitness gym wear, leggings and sports bra, athletic style", category="casual"),
    OutfitPreset(id="21", name="T-shirt and jeans", prompt="white T-shirt and jeans", category="casual"),

    # Fantasy
    OutfitPreset(id="5", name="Knight armor", prompt="silver plate armor, knight aesthetics, fantasy style, cape", category="fantasy"),
    OutfitPreset(id="6", name="Mage robe", prompt="mystical mage robe with starry patterns, hood, glowing runes", category="fantasy"),
    OutfitPreset(id="7", name="Elven attire", prompt="elegant elven tunic, forest green and gold details, nature motifs", category="fantasy"),
    OutfitPreset(id="8", name="Adventurer", prompt="leather adventurer gear, belts, pouches, rpg style", category="fantasy"),

    # Formal/Traditional
    OutfitPreset(id="9", name="Business suit", prompt="sharp black business suit, white shirt, professional look", category="formal"),
    OutfitPreset(id="10", name="Evening gown", prompt="elegant red evening gown, jewelry, luxury fashion", category="formal"),
    OutfitPreset(id="11", name="Kimono (cherry blossom)", prompt="traditional japanese kimono with cherry blossom patterns, obi belt", category="formal"),
    OutfitPreset(id="12", name="Tuxedo", prompt="classic black tuxedo, bow tie, formal wear", category="formal"),

    # Occupation
    OutfitPreset(id="13", name="Doctor", prompt="white medical lab coat, stethoscope, doctor outfit", category="occupation"),
    OutfitPreset(id="14", name="Nurse", prompt="classic nurse uniform, medical cap", category="occupation"),
    OutfitPreset(id="15", name="Police officer", prompt="police officer uniform, badge, hat", category="occupation"),
    OutfitPreset(id="16", name="Chef", prompt="white chef uniform, chef hat, apron", category="occupation"),

    # Costume
    OutfitPreset(id="17", name="Maid", prompt="classic french maid outfit, frills, apron, headdress", category="costume"),
    OutfitPreset(id="18", name="Cyberpunk", prompt="futuristic cyberpunk techwear, neon accents, transparent jacket", category="costume"),
    OutfitPreset(id="19", name="Steampunk", prompt="steampunk attire, gears, goggles, victorian influence, corset", category="costume"),
    OutfitPreset(id="20", name="Ninja", prompt="black ninja shinobi shozoku, mask, stealth gear", category="costume"),
]


def get_preset(preset_id: str) -> OutfitPreset | None:
    return next((p for p in OUTFIT_PRESETS if p.id == preset_id), None)


def presets_by_category() -> dict[str, list[OutfitPreset]]:
    grouped: dict[str, list[OutfitPreset]] = {category: [] for category in CATEGORY_LABELS}
    for preset in OUTFIT_PRESETS:
        grouped.setdefault(preset.category, []).append(preset)
    return grouped


def preset_intent(preset: OutfitPreset) -> TextIntent:
    return TextIntent(text=preset.prompt)
