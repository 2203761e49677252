"""
Curated word pairs. Each pair is two related but distinct concepts: one side
is dealt to civilians, the other to the undercover players.
"""
from typing import List, Tuple

WORD_PAIRS: List[Tuple[str, str]] = [
    ("Fried rice", "Rice porridge"),
    ("Coffee", "Tea"),
    ("Cat", "Dog"),
    ("Sea", "River"),
    ("Moon", "Sun"),
    ("Train", "Bus"),
    ("Guitar", "Ukulele"),
    ("Football", "Basketball"),
    ("Pizza", "Hamburger"),
    ("Mountain", "Hill"),
    ("Pillow", "Blanket"),
    ("Pen", "Pencil"),
    ("Phone", "Tablet"),
    ("Shoes", "Sandals"),
    ("Glasses", "Sunglasses"),
    ("Bicycle", "Motorcycle"),
    ("Ice cream", "Cake"),
    ("Book", "Magazine"),
    ("Banana", "Mango"),
    ("Orange", "Mandarin"),
    ("Spoon", "Fork"),
    ("Chair", "Sofa"),
    ("Table", "Counter"),
    ("Hat", "Cap"),
    ("Clock", "Wristwatch"),
    ("Bag", "Backpack"),
    ("T-shirt", "Shirt"),
    ("Shorts", "Trousers"),
    ("Umbrella", "Raincoat"),
    ("Fridge", "Freezer"),
    ("Microwave", "Oven"),
    ("Television", "Monitor"),
    ("Movie", "Series"),
    ("Song", "Podcast"),
    ("Swimming", "Diving"),
    ("Running", "Walking"),
    ("Dancing", "Yoga"),
    ("Sticky rice", "Steamed rice"),
    ("Green curry", "Red curry"),
    ("Meatball", "Sausage"),
    ("Orange juice", "Lemonade"),
    ("Milk", "Yogurt"),
    ("Bread", "Croissant"),
    ("Socks", "Gloves"),
    ("Scarf", "Necktie"),
    ("Ring", "Bracelet"),
    ("Necklace", "Earrings"),
    ("Key", "Padlock"),
    ("Candle", "Lantern"),
    ("Rose", "Jasmine"),
    ("Tree", "Flower"),
    ("Bird", "Butterfly"),
    ("Fish", "Shrimp"),
    ("Chicken", "Duck"),
    ("Pig", "Cow"),
    ("Elephant", "Giraffe"),
    ("Lion", "Tiger"),
    ("Frog", "Toad"),
    ("Snake", "Lizard"),
    ("Ant", "Bee"),
    ("Mosquito", "Fly"),
    ("Star", "Shooting star"),
    ("Cloud", "Fog"),
    ("Rain", "Snow"),
    ("Wind", "Storm"),
    ("Sand", "Rock"),
    ("Island", "Peninsula"),
    ("Cave", "Tunnel"),
    ("Bridge", "Highway"),
    ("Temple", "Church"),
    ("School", "University"),
    ("Hospital", "Clinic"),
    ("Restaurant", "Cafe"),
    ("Market", "Mall"),
    ("Park", "Playground"),
    ("Swimming pool", "Water park"),
    ("Airport", "Train station"),
    ("Bank", "Post office"),
    ("Police officer", "Soldier"),
    ("Doctor", "Nurse"),
    ("Teacher", "Professor"),
    ("Singer", "Musician"),
    ("Actor", "Comedian"),
    ("Painter", "Photographer"),
    ("Chef", "Barista"),
    ("Engineer", "Architect"),
    ("Lawyer", "Judge"),
    ("Pilot", "Ship captain"),
    ("Magic", "Acrobatics"),
    ("Chess", "Checkers"),
    ("Cards", "Dice"),
    ("Kite", "Boomerang"),
    ("Fishing", "Hunting"),
    ("Camping", "Picnic"),
    ("Karaoke", "Disco"),
    ("Sushi", "Sashimi"),
    ("Ramen", "Udon"),
    ("Waffle", "Pancake"),
    ("Chocolate", "Cookie"),
    ("Coconut", "Pineapple"),
    ("Watermelon", "Cantaloupe"),
    ("Grape", "Blueberry"),
    ("Strawberry", "Raspberry"),
    ("Peanut", "Almond"),
    ("Butter", "Cheese"),
    ("Chili sauce", "Ketchup"),
    ("Fish sauce", "Soy sauce"),
    ("Salt", "Sugar"),
    ("Chili", "Pepper"),
]
